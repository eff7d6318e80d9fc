"""External collaborators: OCR, vision analysis, prompt synthesis and image models."""
