"""Property-based tests for the reconcile step pipeline.

Feature: cluster-controller, Property 6: Every step runs once, only clean results merge
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from cluster_controller.exceptions import AggregateError, KubernetesError
from cluster_controller.external import ExternalReferenceResolver
from cluster_controller.models.cluster import Cluster
from cluster_controller.models.meta import ObjectMeta
from cluster_controller.phases import PhaseReconciler
from cluster_controller.result import Result
from cluster_controller.store import InMemoryObjectStore

FAIL = "fail"

outcomes = st.lists(
    st.one_of(st.just(FAIL), st.sampled_from([0.0, 1.0, 5.0, 30.0])),
    min_size=1,
    max_size=6,
)


def make_step(outcome, ran):
    def step(cluster):
        ran.append(outcome)
        if outcome == FAIL:
            raise KubernetesError(f"step {len(ran)} failed")
        return Result(requeue_after=outcome)

    return step


@given(plan=outcomes)
def test_property_6_every_step_runs_once(plan):
    """
    Feature: cluster-controller, Property 6: Every step runs once, only clean results merge

    Failures never short-circuit the pipeline and every failure is reported.
    """
    ran = []
    store = InMemoryObjectStore()
    reconciler = PhaseReconciler(
        store, ExternalReferenceResolver(store), steps=[make_step(o, ran) for o in plan]
    )
    cluster = Cluster(metadata=ObjectMeta(name="c1"))

    if FAIL in plan:
        with pytest.raises(AggregateError) as exc_info:
            reconciler.reconcile(cluster)
        assert len(exc_info.value.errors) == plan.count(FAIL)
    else:
        result = reconciler.reconcile(cluster)
        non_zero = [d for d in plan if d > 0]
        assert result.requeue_after == (min(non_zero) if non_zero else 0.0)

    assert ran == plan
