import pytest

from analyzer.app.persistence.store import InMemorySnapshotStore, JsonFileSnapshotStore
from analyzer.app.schemas.findings import Finding, Severity
from analyzer.app.schemas.tracks import Party, TrackFailure, TrackPhase, TrackSnapshot

pytestmark = pytest.mark.anyio


def _snapshot(phase=TrackPhase.SEQUENCING, cursor=1) -> TrackSnapshot:
    return TrackSnapshot(
        document_id="contracts/acme msa.pdf",
        phase=phase,
        category_cursor=cursor,
        category_total=6,
        findings=[
            Finding(
                id="liability-and-indemnification-0-abcd1234",
                title="Uncapped indemnity",
                severity=Severity.HIGH,
                source_span="The Supplier shall indemnify the Customer.",
                category="LIABILITY AND INDEMNIFICATION",
                location="Section 8",
            )
        ],
        summaries=["LIABILITY AND INDEMNIFICATION: One-sided."],
        party=Party(name="Acme Corp"),
    )


async def test_json_store_round_trip(tmp_path):
    store = JsonFileSnapshotStore(tmp_path)
    snapshot = _snapshot()

    await store.persist(snapshot)
    loaded = await store.get_known_results(snapshot.document_id)

    assert loaded == snapshot
    assert loaded.party.name == "Acme Corp"


async def test_json_store_upserts_by_document(tmp_path):
    store = JsonFileSnapshotStore(tmp_path)

    await store.persist(_snapshot(cursor=1))
    await store.persist(
        _snapshot(phase=TrackPhase.FAILED, cursor=2).model_copy(
            update={
                "failure": TrackFailure(
                    kind="transient",
                    message="503",
                    cursor=2,
                    category_name="PAYMENT AND FINANCIAL",
                    resumable=True,
                )
            }
        )
    )

    loaded = await store.get_known_results("contracts/acme msa.pdf")

    assert loaded.category_cursor == 2
    assert loaded.failure.category_name == "PAYMENT AND FINANCIAL"
    # one file, no temporary leftovers
    assert [p.name for p in tmp_path.iterdir()] == [
        store.path_for("contracts/acme msa.pdf").name
    ]


async def test_unknown_document_has_no_results(tmp_path):
    assert await JsonFileSnapshotStore(tmp_path).get_known_results("nope") is None
    assert await InMemorySnapshotStore().get_known_results("nope") is None


async def test_in_memory_store_returns_copies():
    store = InMemorySnapshotStore()
    snapshot = _snapshot()

    await store.persist(snapshot)
    loaded = await store.get_known_results(snapshot.document_id)
    loaded.summaries.append("mutated")

    again = await store.get_known_results(snapshot.document_id)
    assert again.summaries == snapshot.summaries


def test_file_names_are_safe_for_any_document_id(tmp_path):
    store = JsonFileSnapshotStore(tmp_path)

    path = store.path_for("../../etc/passwd")

    assert path.parent == tmp_path
    assert path.suffix == ".json"
