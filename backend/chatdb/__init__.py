"""ChatDB-AI: natural-language questions over a read-only MySQL database.

Package Structure:
    core/       - Core infrastructure (config, models, storage, exceptions, MySQL capability)
    schema/     - Schema catalog, live/saved metadata merge, schema reader
    llm/        - Provider adapters (OpenAI, Anthropic, Perplexity, local servers) and prompts
    security/   - SQL validation and extraction, data masking, audit logging
    chat/       - Prompt builder and chat turn engine
"""

__version__ = "0.1.0"
