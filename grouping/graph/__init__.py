"""Friend-request graph and friend clusters."""

from __future__ import annotations

from .friend_clusters import ClusterAnalysis, FriendClusterBuilder, cluster_id_for

__all__ = ["ClusterAnalysis", "FriendClusterBuilder", "cluster_id_for"]
