"""All prompt templates for the pipeline."""

ANSWER_GENERATION_SYSTEM = """You are a precise, factual assistant. Answer questions using ONLY the provided context.
Rules:
- If the context doesn't contain enough information, say so clearly.
- Never make up information not present in the context.
- Be concise and direct."""

ANSWER_GENERATION_PROMPT = """Context:
{context}

Question: {query}

Provide a clear answer based on the context above."""
