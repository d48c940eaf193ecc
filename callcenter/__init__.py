"""City General call center: a multi-agent router for a hospital chatbot.

Architecture Overview
=====================

Every message goes through one **turn** of the dispatcher, built as a
LangGraph state graph:

1. **greeting** on the first turn of a conversation, whatever was typed.
2. Otherwise **classify** (the Intent Classifier) picks one of five agents:
   greeting, appointment, hr, closing or fallback.
3. The chosen **handler** works out a finer sub-intent, builds a prompt with
   the relevant data (free slots, handbook sections) and asks the LLM for
   the reply.

Key Design Decisions
--------------------
- **LLM first, rules second**: the classifier asks a small model for a JSON
  routing decision and falls back to ordered keyword rules when the reply
  is unusable or the model is unreachable.
- **Canned replies**: every handler has a static, contact-bearing reply used
  when the LLM fails, so the system keeps answering without a model.
- **Read / patch separation**: handlers read a copy of the session and
  return context patches; only the dispatcher writes sessions.
- **Per-session ordering**: turns for one session are serialised with a
  per-key lock; sessions expire after an idle TTL.
- **Dual Interface**: FastAPI server (``callcenter.server``) + CLI chat loop
  (``callcenter.main``).

Package Structure
-----------------
- ``callcenter/dispatcher.py`` — turn graph, session coordination, ``turn()``
- ``callcenter/agents/`` — classifier, router-reply parser, the five handlers
- ``callcenter/services/`` — LLM client, hospital data, session store, metrics
- ``callcenter/session.py`` — session model and context merge
- ``callcenter/knowledge.py`` — HR handbook lookup
- ``callcenter/prompts.py`` — prompt templates and canned replies
- ``callcenter/api/`` — FastAPI routes and Pydantic schemas
"""
