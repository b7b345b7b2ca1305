"""
defrakit - RAG Engine
======================
A strictly sequential Retrieval-Augmented Generation demo with DefraDB as
the vector store.

Architecture
------------
``OllamaClient``
    Chat completions and embeddings through Ollama's OpenAI-compatible
    API, using the ``openai`` SDK.

``RAGPipeline``
    Single-shot orchestrator.  Flow:
        1. Ask the LLM the question with no context (baseline)
        2. Start the node and ensure the ``Wiki`` schema with its
           ``@embedding`` directive
        3. Stream the JSON-lines file; one ``create_Wiki`` write per
           record, text prefixed for the embedding model
        4. Embed the question with the query-side prefix
        5. Similarity query: top ``SEARCH_RESULTS_LIMIT`` hits above
           ``SIMILARITY_THRESHOLD``, most similar first
        6. Re-ask the LLM with the retrieved passages as context

    Step 1 never aborts the run.  Any failure in steps 2-6 raises
    ``RAGPipelineError``.  Embeddings for stored documents are computed by
    the node itself; only the query embedding is requested here.

Usage:
    from defrakit.src.core.rag_engine import OllamaClient, RAGPipeline
    pipeline = RAGPipeline(node, OllamaClient())
    result = pipeline.run()
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import openai

from defrakit.config.prompt_templates import CLOSING_INSTRUCTION, CONTEXT_BULLET, CONTEXT_INSTRUCTIONS, SYSTEM_PROMPT, USER_QUESTION_TEMPLATE
from defrakit.config.settings import settings
from defrakit.src.database.defra_node import DefraError, DefraNode
from defrakit.src.database.schema import WIKI_SCHEMA, ensure_schema
from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)

_BANNER = "=" * 80
_PREVIEW_CHARS = 100

CREATE_WIKI_MUTATION: str = """mutation CreateWiki($input: [WikiMutationInputArg!]!) {
  create_Wiki(input: $input) {
    _docID
  }
}"""

_SEARCH_QUERY_TEMPLATE: str = """query Search($queryVector: [Float32!]!) {{
  Wiki(
    filter: {{_alias: {{sim: {{_gt: {threshold}}}}}}},
    limit: {limit},
    order: {{_alias: {{sim: DESC}}}}
  ) {{
    text
    sim: _similarity(text_v: {{vector: $queryVector}})
  }}
}}"""


class RAGPipelineError(Exception):
    """A fatal step of the RAG pipeline failed."""


@dataclass(frozen=True)
class SearchHit:
    text: str
    similarity: float


@dataclass
class RAGResult:
    baseline_reply: str
    documents_loaded: int = 0
    hits: list[SearchHit] = field(default_factory=list)
    reply: str | None = None


def render_system_prompt(contexts: list[str] | None = None) -> str:
    """Build the system prompt, embedding *contexts* as ordered bullets."""
    prompt = SYSTEM_PROMPT
    if contexts:
        bullets = "\n".join(CONTEXT_BULLET.format(text=text) for text in contexts)
        prompt += "\n" + CONTEXT_INSTRUCTIONS.format(context=bullets)
    return prompt + CLOSING_INSTRUCTION


def build_search_query(threshold: float, limit: int) -> str:
    return _SEARCH_QUERY_TEMPLATE.format(threshold=threshold, limit=limit)


# ══════════════════════════════════════════════════════════════════════
#  LLM / EMBEDDING CLIENT
# ══════════════════════════════════════════════════════════════════════


class OllamaClient:
    """
    Chat + embeddings against an OpenAI-compatible endpoint (Ollama).

    Parameters
    ----------
    client
        Pre-built ``openai.OpenAI`` instance (injected in tests).
    """

    __slots__ = ("_client", "llm_model", "embedding_model")

    def __init__(self, base_url: str | None = None, llm_model: str | None = None, embedding_model: str | None = None, client: openai.OpenAI | None = None) -> None:
        self._client = client or openai.OpenAI(base_url=base_url or settings.OLLAMA_BASE_URL, api_key=settings.OLLAMA_API_KEY.get_secret_value())
        self.llm_model = llm_model or settings.LLM_MODEL
        self.embedding_model = embedding_model or settings.EMBEDDING_MODEL


    def chat(self, system_prompt: str, question: str) -> str:
        """Send system prompt + question; return the trimmed reply."""
        response = self._client.chat.completions.create(
            model=self.llm_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": USER_QUESTION_TEMPLATE.format(question=question)},
            ],
        )
        return (response.choices[0].message.content or "").strip()


    def embed(self, text: str) -> list[float]:
        response = self._client.embeddings.create(model=self.embedding_model, input=[text])
        return list(response.data[0].embedding)


# ══════════════════════════════════════════════════════════════════════
#  PIPELINE
# ══════════════════════════════════════════════════════════════════════


class RAGPipeline:
    """
    Parameters
    ----------
    node
        A ``DefraNode``; ``run`` starts it after the baseline question.
    llm
        ``OllamaClient`` (or anything with ``chat`` and ``embed``).
    question
        Defaults to ``settings.RAG_QUESTION``.
    data_file
        JSON-lines knowledge base.  Defaults to ``settings.RAG_DATA_FILE``.
    """

    __slots__ = ("_node", "_llm", "question", "data_file", "threshold", "limit")

    def __init__(self, node: DefraNode, llm: OllamaClient, question: str | None = None, data_file: str | Path | None = None, threshold: float | None = None, limit: int | None = None) -> None:
        self._node = node
        self._llm = llm
        self.question = question or settings.RAG_QUESTION
        self.data_file = Path(data_file or settings.RAG_DATA_FILE)
        self.threshold = settings.SIMILARITY_THRESHOLD if threshold is None else threshold
        self.limit = limit or settings.SEARCH_RESULTS_LIMIT


    def run(self) -> RAGResult:
        """Execute all six steps in order."""
        _section("Asking the LLM without providing any external knowledge (no RAG)")
        result = RAGResult(baseline_reply=self.ask_baseline())

        _section("Set up DefraDB and load knowledge base")
        self.start_node()
        self.prepare_schema()
        result.documents_loaded = self.load_documents()

        _section("Retrieving relevant documents from DefraDB")
        t_search = time.perf_counter()
        query_vector = self.embed_question()
        result.hits = self.search(query_vector)
        logger.info("Search (incl. query embedding) took %.1fms", (time.perf_counter() - t_search) * 1000)

        if not result.hits:
            logger.info("No relevant documents found in the knowledge base.")
            return result

        logger.info("Found relevant documents:")
        for i, hit in enumerate(result.hits, 1):
            logger.info(' - Document %d (similarity: %.4f): "%s..."', i, hit.similarity, hit.text[:_PREVIEW_CHARS])

        _section("Asking the LLM with retrieved knowledge (with RAG)")
        result.reply = self.answer([hit.text for hit in result.hits])
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def ask_baseline(self) -> str:
        """Step 1: ask without context.  Provider errors are logged, not raised."""
        logger.info("Question: %s", self.question)
        try:
            reply = self._llm.chat(render_system_prompt(), self.question)
        except openai.OpenAIError as exc:
            logger.warning("Baseline LLM call failed: %s", exc)
            reply = ""
        logger.info('Initial reply from the LLM: "%s"', reply)
        return reply


    def start_node(self) -> None:
        """Step 2a: start (or attach to) the node."""
        logger.info("Setting up DefraDB...")
        try:
            self._node.start()
        except DefraError as exc:
            raise RAGPipelineError(f"Failed to start DefraDB node: {exc}") from exc


    def prepare_schema(self) -> None:
        """Step 2: make sure the ``Wiki`` collection exists."""
        try:
            ensure_schema(self._node, "Wiki", WIKI_SCHEMA)
        except DefraError as exc:
            raise RAGPipelineError(f"Failed to add schema: {exc}") from exc


    def load_documents(self, path: str | Path | None = None) -> int:
        """Step 3: insert every JSON-lines record, one write per record."""
        source = Path(path or self.data_file)
        logger.info("Reading JSON lines from %s and adding to the 'Wiki' collection...", source)

        count = 0
        for article in _read_jsonl(source):
            variables = {"input": {"text": settings.DOCUMENT_PREFIX + str(article.get("text", "")), "category": article.get("category")}}
            try:
                created = self._node.exec_request(CREATE_WIKI_MUTATION, variables)
            except DefraError as exc:
                raise RAGPipelineError(f"Failed to create document in DefraDB: {exc}") from exc
            if created.errors:
                for gql_err in created.errors:
                    logger.error("GraphQL error on create: %s", gql_err)
                raise RAGPipelineError("Failed to create document in DefraDB.")
            count += 1

        logger.info("Finished loading %d document(s) into DefraDB.", count)
        return count


    def embed_question(self) -> list[float]:
        """Step 4: embed the question with the query-side prefix."""
        logger.info("Creating embedding for the query...")
        try:
            return self._llm.embed(settings.QUERY_PREFIX + self.question)
        except openai.OpenAIError as exc:
            raise RAGPipelineError(f"Failed to create query embedding: {exc}") from exc


    def search(self, query_vector: list[float]) -> list[SearchHit]:
        """Step 5: similarity query; returned text has the document prefix removed."""
        logger.info("Querying DefraDB for similar documents...")
        try:
            found = self._node.exec_request(build_search_query(self.threshold, self.limit), {"queryVector": query_vector})
        except DefraError as exc:
            raise RAGPipelineError(f"Failed to query documents from DefraDB: {exc}") from exc
        if found.errors:
            for gql_err in found.errors:
                logger.error("GraphQL error on query: %s", gql_err)
            raise RAGPipelineError("Failed to query documents from DefraDB.")

        rows: list[dict[str, Any]] = (found.data or {}).get("Wiki") or []
        return [SearchHit(text=_strip_prefix(str(row.get("text", "")), settings.DOCUMENT_PREFIX), similarity=float(row.get("sim") or 0.0)) for row in rows]


    def answer(self, contexts: list[str]) -> str:
        """Step 6: ask again with *contexts* in the system prompt."""
        logger.info("Asking LLM with augmented question...")
        try:
            reply = self._llm.chat(render_system_prompt(contexts), self.question)
        except openai.OpenAIError as exc:
            raise RAGPipelineError(f"LLM chat completion failed: {exc}") from exc
        logger.info('Reply after augmenting the question with knowledge: "%s"', reply)
        return reply


# ── Helpers ───────────────────────────────────────────────────────────

def _section(title: str) -> None:
    logger.info(_BANNER)
    logger.info(title)
    logger.info(_BANNER)


def _strip_prefix(text: str, prefix: str) -> str:
    return text[len(prefix):] if text.startswith(prefix) else text


def _read_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    """Yield one object per non-blank line, without loading the whole file."""
    try:
        handle = path.open("r", encoding="utf-8")
    except OSError as exc:
        raise RAGPipelineError(f"Failed to open {path}. Make sure the file exists. Error: {exc}") from exc

    with handle:
        for line_no, line in enumerate(handle, 1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError as exc:
                raise RAGPipelineError(f"Failed to decode JSON line {line_no}: {exc}") from exc
            if not isinstance(record, dict):
                raise RAGPipelineError(f"JSON line {line_no} is not an object")
            yield record
