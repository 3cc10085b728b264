"""
rag/ - LLM side of the Counselling FAQ Assistant
=================================================

- prompts.py: Grounded prompt built from the matched FAQs
- upstream.py: Streaming Groq and Ollama providers
- stream.py: Decodes provider streams into NDJSON frames
- chat_engine.py: Ties prompt, provider and relay together
"""
