"""
Friend Cluster Builder.

Builds the camp's friend-request graph with NetworkX and splits it into
connected components with union-find. Any request, mutual or not, links the
pair. Every camper ends up in exactly one cluster; campers with no requests
in either direction are singleton clusters.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import networkx as nx
from networkx.utils import UnionFind

from grouping.models import (
    CamperSessionEntry,
    FriendCluster,
    ViolationFinding,
    ViolationSeverity,
    ViolationType,
)
from grouping.utils.grades import format_grade_range

logger = logging.getLogger(__name__)


def cluster_id_for(camp_id: str, member_ids: Sequence[str]) -> str:
    """Stable 15 character id for a cluster with these members."""
    digest = hashlib.sha1(f"{camp_id}:{','.join(sorted(member_ids))}".encode()).hexdigest()
    return digest[:15]


@dataclass
class ClusterAnalysis:
    """Clusters of one camp plus the graph they came from."""

    graph: nx.Graph
    clusters: list[FriendCluster] = field(default_factory=list)
    cluster_of: dict[str, str] = field(default_factory=dict)
    findings: list[ViolationFinding] = field(default_factory=list)

    @property
    def multi_member_clusters(self) -> list[FriendCluster]:
        return [c for c in self.clusters if not c.is_singleton]

    def friends_of(self, entry_id: str) -> set[str]:
        """Entry ids directly linked to a camper by a request in either direction."""
        if entry_id not in self.graph:
            return set()
        return set(self.graph.neighbors(entry_id))


class FriendClusterBuilder:
    """Groups campers into friend clusters for one camp's constraints."""

    def __init__(self, max_group_size: int, max_grade_spread: int):
        self.max_group_size = max_group_size
        self.max_grade_spread = max_grade_spread

    def build_graph(self, entries: Sequence[CamperSessionEntry]) -> nx.Graph:
        """Undirected graph over entry ids. Edges carry a ``mutual`` flag."""
        graph = nx.Graph()
        by_athlete = {e.athlete_id: e for e in entries}

        for entry in entries:
            graph.add_node(entry.id, athlete_id=entry.athlete_id, grade=entry.grade_validated)

        for entry in entries:
            for athlete_id in entry.friend_request_athlete_ids:
                friend = by_athlete.get(athlete_id)
                if friend is None or friend.id == entry.id:
                    continue
                if graph.has_edge(entry.id, friend.id):
                    graph.edges[entry.id, friend.id]["mutual"] = True
                else:
                    graph.add_edge(entry.id, friend.id, mutual=False, requested_by=entry.id)

        logger.debug(
            f"Friend graph: {graph.number_of_nodes()} campers, {graph.number_of_edges()} links, "
            f"{sum(1 for _, _, m in graph.edges(data='mutual') if m)} mutual"
        )
        return graph

    def build(self, camp_id: str, entries: Sequence[CamperSessionEntry]) -> ClusterAnalysis:
        """Compute clusters and tag each entry with its friend_group_id."""
        graph = self.build_graph(entries)

        union_find = UnionFind(graph.nodes)
        for a, b in graph.edges:
            union_find.union(a, b)

        by_id = {e.id: e for e in entries}
        components = [sorted(members) for members in union_find.to_sets()]
        # Largest first, then by first member id, so numbering is reproducible
        components.sort(key=lambda members: (-len(members), members[0]))

        analysis = ClusterAnalysis(graph=graph)
        for number, member_ids in enumerate(components, start=1):
            cluster = self._make_cluster(camp_id, number, [by_id[m] for m in member_ids])
            analysis.clusters.append(cluster)
            for member_id in member_ids:
                analysis.cluster_of[member_id] = cluster.id
                by_id[member_id].friend_group_id = cluster.id

            if cluster.exceeds_size_constraint:
                analysis.findings.append(self._too_large_finding(cluster, by_id))

        oversized = sum(1 for c in analysis.clusters if c.exceeds_size_constraint)
        wide = sum(1 for c in analysis.clusters if c.exceeds_grade_constraint)
        logger.info(
            f"Built {len(analysis.clusters)} friend clusters for camp {camp_id} "
            f"({len(analysis.multi_member_clusters)} with friends, {oversized} oversized, {wide} over grade spread)"
        )
        return analysis

    def _make_cluster(self, camp_id: str, number: int, members: list[CamperSessionEntry]) -> FriendCluster:
        grades = [m.grade_validated for m in members]
        member_ids = [m.id for m in members]
        cluster = FriendCluster(
            id=cluster_id_for(camp_id, member_ids),
            camp_id=camp_id,
            cluster_number=number,
            member_ids=member_ids,
            min_grade=min(grades),
            max_grade=max(grades),
        )
        cluster.exceeds_size_constraint = cluster.member_count > self.max_group_size
        cluster.exceeds_grade_constraint = cluster.grade_spread > self.max_grade_spread

        if cluster.exceeds_size_constraint:
            cluster.placement_notes.append(
                f"{cluster.member_count} members exceed the group size limit of {self.max_group_size}"
            )
        if cluster.exceeds_grade_constraint:
            cluster.placement_notes.append(
                f"Grades {format_grade_range(cluster.min_grade, cluster.max_grade)} exceed the "
                f"grade spread limit of {self.max_grade_spread}"
            )
        return cluster

    def _too_large_finding(
        self,
        cluster: FriendCluster,
        by_id: dict[str, CamperSessionEntry],
    ) -> ViolationFinding:
        names = ", ".join(by_id[m].full_name for m in cluster.member_ids)
        return ViolationFinding(
            violation_type=ViolationType.FRIEND_GROUP_TOO_LARGE,
            severity=ViolationSeverity.WARNING,
            affected_friend_group_id=cluster.id,
            affected_camper_ids=list(cluster.member_ids),
            title=f"Friend group {cluster.cluster_number} is too large",
            description=(
                f"Friend group {cluster.cluster_number} has {cluster.member_count} members but groups "
                f"hold at most {self.max_group_size}: {names}"
            ),
            suggested_resolution="Accept the split, or raise the camp's maximum group size",
            details={"member_count": cluster.member_count, "max_group_size": self.max_group_size},
        )
