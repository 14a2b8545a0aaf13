"""Single-tier cosine scan over the flat memory and message corpus."""

from __future__ import annotations

import logging

from convmem.models import RankedCandidate, SearchPath
from convmem.retrieval.assembler import Retrieval, corpus_candidate, sort_and_truncate
from convmem.retrieval.context import RequestContext

logger = logging.getLogger(__name__)


async def retrieve_legacy(ctx: RequestContext, reason: str | None = None) -> Retrieval:
    """Scan every embedded memory record and message. Never returns None.

    Args:
        ctx: Request context
        reason: Diagnostic explaining why the flat scan was used
    """
    ctx.check_deadline("legacy corpus scan")
    rows = await ctx.store.query_corpus_union(ctx.time_window)

    candidates: list[RankedCandidate] = []
    for row in rows:
        similarity = ctx.similarity_to(row.embedding, row.id)
        if similarity is not None and similarity >= ctx.min_similarity:
            candidates.append(corpus_candidate(row, similarity))

    candidates = sort_and_truncate(candidates, ctx.limit)
    logger.info(
        f"[LEGACY] {len(candidates)} of {len(rows)} corpus rows above {ctx.min_similarity}"
        f"{f' ({reason})' if reason else ''}"
    )
    return Retrieval(candidates=candidates, search_path=SearchPath.LEGACY, message=reason)
