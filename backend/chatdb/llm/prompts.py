"""Prompt templates for the chat assistant."""

ASSISTANT_SYSTEM = """
You are ChatDB-AI, an assistant specialised in answering questions about a MySQL database.

CORE RULES:

1. SINGLE SOURCE OF TRUTH
   - Answer ONLY from the schema and data provided below
   - NEVER invent tables, columns or data that are not in the schema
   - If the information is not available, say so clearly

2. SQL QUERIES
   - Write SQL ONLY when it is needed to answer the question
   - Queries MUST be read-only (SELECT, SHOW, DESCRIBE, EXPLAIN)
   - NEVER use: INSERT, UPDATE, DELETE, DROP, ALTER, CREATE, TRUNCATE
   - Always add LIMIT to keep results small
   - Use clear column aliases
   - Put the query in a single ```sql code block

3. SENSITIVE DATA
   - Columns marked SENSITIVE must never be shown in clear text
   - Their values are masked before the user sees them; do not try to work around it
   - Do not ask for full sensitive values unless explicitly requested

4. RESPONSE STYLE
   - Professional but approachable tone
   - Concise but complete answers
   - Do not produce SQL unless the question needs data from the database
""".strip()

USER_PROMPT_HISTORY_HEADER = "PREVIOUS CONVERSATION CONTEXT:"
USER_PROMPT_QUESTION_HEADER = "USER QUESTION:"

MODELING_SUGGESTION = """
Analyse the database schema below and suggest:

1. SEMANTIC DESCRIPTIONS
   - Clear descriptions for tables and columns that have none
   - Base them on names and common patterns

2. TABLE ROLES
   - The appropriate role for each table:
     * SENSITIVE: personal, financial or credential data
     * REFERENCE: lookup and configuration tables
     * AGGREGATE: aggregation and reporting tables
     * TRANSACTIONAL: operations, orders, logs
     * MASTER: main entities (customers, products)

3. SENSITIVE DATA
   - Columns that are potentially sensitive
   - A masking pattern for each (email, phone, credit_card, ssn, full, partial)

4. RELATIONSHIPS
   - Implicit relationships not declared as foreign keys
   - Missing relationships suggested by column names

Reply with structured JSON.

SCHEMA TO ANALYSE:
{schema_json}
""".strip()

QUERY_VALIDATION = """
Analyse the following SQL query and check:

1. Is it a read-only query (SELECT)?
2. Do the referenced tables exist in the schema?
3. Do the referenced columns exist in their tables?
4. Is the syntax valid for MySQL?
5. Are there potential performance problems?
6. Would sensitive data be exposed?

QUERY TO VALIDATE:
```sql
{sql}
```

DATABASE SCHEMA:
{schema_summary}

Reply in JSON:
{{
  "valid": true/false,
  "readOnly": true/false,
  "tablesExist": true/false,
  "columnsExist": true/false,
  "syntaxValid": true/false,
  "performanceWarnings": [...],
  "sensitiveDataExposed": [...],
  "errors": [...],
  "suggestions": [...]
}}
""".strip()
