"""
Services package for Round1.

This package contains the external collaborators of an interview session:
- Azure AI Foundry: chat completions with JSON output
- Question generator and interview scorer: the two LLM prompt flows
- Impression classifier: hosted (Roboflow-style) or simulated frame classification
- Session store: in-memory or JSON-file persistence
"""
