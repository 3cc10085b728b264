"""
core/ - Core business logic for the Counselling FAQ Assistant
==============================================================

This package contains the main components:
- safety.py: Crisis/depression/greeting/meta triage
- vectorstore.py: FAQ corpus loading and the FAISS vector index
- keyword_index.py: Fuzzy keyword matching over questions and answers
- ranking.py: Hybrid merge of both searches and the confidence gate
- embeddings.py: Worker pool that embeds incoming questions
- service.py: Main service layer that orchestrates everything
"""
