"""SoGood RAG chat backend."""
