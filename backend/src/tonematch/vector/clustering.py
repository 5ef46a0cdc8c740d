"""
Style clustering.

Groups a user's emails for one relationship category into k style
clusters. scikit-learn's k-means runs on L2-normalised style vectors so
Euclidean assignment tracks cosine distance.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from sklearn.cluster import KMeans

from tonematch.common.exceptions import ClusteringError
from tonematch.config.models import ClusteringConfig
from tonematch.domain.models import EmailCandidate, Vector
from tonematch.vector.similarity import normalize_rows

logger = logging.getLogger(__name__)


class StyleCluster(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    centroid: Vector
    email_ids: list[str] = Field(default_factory=list)
    avg_score: float = 0.0

    @property
    def size(self) -> int:
        return len(self.email_ids)


class StyleClusterResult(BaseModel):
    success: bool
    clusters: list[StyleCluster] = Field(default_factory=list)
    skipped_ids: list[str] = Field(default_factory=list)
    iterations: int = 0
    error: str | None = None


class StyleClusteringService:
    def __init__(self, config: ClusteringConfig) -> None:
        self._config = config

    def _cluster_name(self, index: int) -> str:
        names = self._config.cluster_names
        return names[index] if index < len(names) else f"cluster-{index}"

    def kmeans(
        self, vectors: np.ndarray, k: int
    ) -> tuple[np.ndarray, np.ndarray, int]:
        """Return ``(centroids, assignments, iterations)``; centroids are member means."""
        if len(vectors) == 0:
            raise ClusteringError("Cannot cluster an empty vector list")
        model = KMeans(
            n_clusters=k,
            init="k-means++",
            n_init=self._config.n_init,
            max_iter=self._config.max_iterations,
            random_state=self._config.seed,
        )
        assignments = model.fit_predict(normalize_rows(vectors))

        centroids = model.cluster_centers_.astype(np.float32)
        for c in range(k):
            members = vectors[assignments == c]
            if len(members) > 0:
                centroids[c] = members.mean(axis=0)
        return centroids, assignments, int(model.n_iter_)

    def cluster_emails(
        self,
        user_id: str,
        relationship: str,
        emails: Sequence[EmailCandidate],
        cluster_count: int | None = None,
    ) -> StyleClusterResult:
        """
        Cluster emails by style vector; emails without one are skipped.

        Failures are reported on the result rather than raised.
        """
        usable = [e for e in emails if e.style_vector is not None and np.any(e.style_vector)]
        usable_ids = {e.id for e in usable}
        skipped = [e.id for e in emails if e.id not in usable_ids]
        if not usable:
            return StyleClusterResult(success=True, skipped_ids=skipped)

        try:
            k = min(cluster_count or self._config.cluster_count, len(usable))
            if k < 1:
                raise ClusteringError("cluster_count must be positive")
            vectors = np.stack([e.style_vector for e in usable]).astype(np.float32)
            centroids, assignments, iterations = self.kmeans(vectors, k)

            unit = normalize_rows(vectors)
            unit_centroids = normalize_rows(centroids)
            clusters = []
            for c in range(k):
                member_idx = np.flatnonzero(assignments == c)
                scores = unit[member_idx] @ unit_centroids[c]
                clusters.append(
                    StyleCluster(
                        id=f"cluster-{c}",
                        name=self._cluster_name(c),
                        centroid=centroids[c],
                        email_ids=[usable[i].id for i in member_idx],
                        avg_score=float(scores.mean()) if len(member_idx) else 0.0,
                    )
                )
            clusters.sort(key=lambda cl: cl.size, reverse=True)
        except Exception as e:
            logger.error(
                "Style clustering failed for user %s/%s: %s", user_id, relationship, e
            )
            return StyleClusterResult(success=False, skipped_ids=skipped, error=str(e))

        logger.info(
            "Clustered %d emails for %s/%s into %d clusters (%d iterations)",
            len(usable),
            user_id,
            relationship,
            len(clusters),
            iterations,
        )
        return StyleClusterResult(
            success=True, clusters=clusters, skipped_ids=skipped, iterations=iterations
        )
