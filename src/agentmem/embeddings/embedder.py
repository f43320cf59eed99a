"""Cache-aware, batched embedding on top of the FallbackChain.

Every text is looked up in the EmbeddingCache under the active provider's
(provider, model, credential fingerprint) key first. Misses are split into
sub-batches with at most ``concurrency`` in flight, reassembled in input
order, and written back only after the whole call succeeded. A provider call
that runs longer than ``timeout`` counts as ProviderUnavailable; time spent
queued behind other calls does not count. Queries get their own worker pool so
a bulk sync cannot starve them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field

from agentmem.db.cache import CacheKey, EmbeddingCache, content_hash
from agentmem.embeddings.base import EmbeddingProvider
from agentmem.embeddings.fallback import FallbackChain
from agentmem.errors import InvalidResponse, ProviderError, ProviderUnavailable, SearchDisabled

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingBatch:
    """Vectors for one embed() call plus the provider that produced them.

    Attributes:
        provider: Provider name (``openai``, ``gemini``, ``local``).
        model: Provider-qualified model id the vectors belong to.
        vectors: One vector per input text, in input order.
        cache_hits: Inputs answered from the cache.
    """

    provider: str
    model: str
    vectors: list[list[float]] = field(default_factory=list)
    cache_hits: int = 0


class CachedEmbedder:
    """Embed texts through *chain*, consulting *cache* first.

    Args:
        chain: Provider selection policy.
        cache: Embedding cache, or None to disable caching.
        batch_size: Maximum texts per provider call.
        concurrency: Maximum provider calls in flight.
        timeout: Seconds one provider call may run once started.
    """

    def __init__(
        self,
        chain: FallbackChain,
        cache: EmbeddingCache | None = None,
        batch_size: int = 32,
        concurrency: int = 2,
        timeout: float = 60.0,
    ) -> None:
        if batch_size < 1 or concurrency < 1:
            raise ValueError("batch_size and concurrency must be >= 1")
        self.chain = chain
        self._cache = cache
        self._batch_size = batch_size
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="agentmem-embed"
        )
        self._query_executor = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="agentmem-query"
        )

    def embed(self, texts: Sequence[str]) -> EmbeddingBatch:
        """Embed *texts*, falling back across providers on failure.

        Raises:
            SearchDisabled: If no provider is available or every provider failed.
        """
        return self._embed(texts, self._executor)

    def embed_query(self, text: str) -> tuple[EmbeddingBatch, list[float]]:
        """Embed a single query string. Returns the batch and its only vector."""
        batch = self._embed([text], self._query_executor)
        return batch, batch.vectors[0]

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._query_executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _embed(self, texts: Sequence[str], executor: ThreadPoolExecutor) -> EmbeddingBatch:
        last: ProviderError | None = None
        for provider in self.chain.attempts():
            try:
                vectors, hits = self._embed_with(provider, list(texts), executor)
            except ProviderError as exc:
                self.chain.report_failure(provider, exc)
                last = exc
                continue
            self.chain.report_success(provider)
            return EmbeddingBatch(provider.name, provider.model, vectors, hits)
        raise SearchDisabled("All embedding providers failed.") from last

    def _embed_with(
        self, provider: EmbeddingProvider, texts: list[str], executor: ThreadPoolExecutor
    ) -> tuple[list[list[float]], int]:
        if not texts:
            return [], 0

        key = CacheKey(provider.name, provider.model, provider.credential_fingerprint)
        hashes = [content_hash(t) for t in texts]
        cached = self._cache.get_many(key, hashes) if self._cache is not None else {}

        missing: dict[str, str] = {}
        for h, text in zip(hashes, texts):
            if h not in cached and h not in missing:
                missing[h] = text

        computed: dict[str, list[float]] = {}
        if missing:
            vectors = self._compute(provider, list(missing.values()), executor)
            computed = dict(zip(missing.keys(), vectors))
            if cached:
                dims = len(next(iter(cached.values())))
                if len(vectors[0]) != dims:
                    raise InvalidResponse(
                        f"'{provider.name}' returned {len(vectors[0])} dimensions; cached vectors have {dims}.",
                        provider=provider.name,
                    )
            if self._cache is not None:
                self._cache.put_many(key, computed)

        lookup = {**cached, **computed}
        hits = sum(1 for h in hashes if h in cached)
        logger.debug(
            "Embedded %d text(s) with %s: %d cache hit(s), %d computed",
            len(texts),
            provider.model,
            hits,
            len(computed),
        )
        return [lookup[h] for h in hashes], hits

    def _compute(
        self, provider: EmbeddingProvider, texts: list[str], executor: ThreadPoolExecutor
    ) -> list[list[float]]:
        batches = [texts[i : i + self._batch_size] for i in range(0, len(texts), self._batch_size)]
        calls = [_submit(executor, provider, batch) for batch in batches]
        results: list[list[float]] = []
        try:
            for batch, (started, future) in zip(batches, calls):
                # The deadline runs from when a worker picks the call up, not from submit.
                started.wait()
                try:
                    vectors = future.result(timeout=self._timeout)
                except FuturesTimeout as exc:
                    raise ProviderUnavailable(
                        f"'{provider.name}' timed out after {self._timeout:g}s.",
                        provider=provider.name,
                    ) from exc
                if len(vectors) != len(batch):
                    raise InvalidResponse(
                        f"'{provider.name}' returned {len(vectors)} vectors for {len(batch)} inputs.",
                        provider=provider.name,
                    )
                results.extend(vectors)
        except BaseException:
            for _, future in calls:
                future.cancel()
            raise

        dims = len(results[0])
        if any(len(v) != dims for v in results):
            raise InvalidResponse(
                f"'{provider.name}' returned vectors of mixed dimensionality.", provider=provider.name
            )
        return results


def _submit(
    executor: ThreadPoolExecutor, provider: EmbeddingProvider, batch: list[str]
) -> tuple[threading.Event, Future[list[list[float]]]]:
    """Submit one provider call; the event is set once it starts (or is cancelled)."""
    started = threading.Event()

    def call() -> list[list[float]]:
        started.set()
        return provider.embed(batch)

    future = executor.submit(call)
    future.add_done_callback(lambda _: started.set())
    return started, future
