"""Both backends must produce identical results for identical operation sequences."""
import json

from fakes import FakeSupabaseClient, TickingClock
from models.conversation import Message
from storage.document_store import DocumentStore
from storage.file_store import FileStore


def _without_ids(conversations):
    records = []
    for conversation in conversations:
        record = conversation.to_dict()
        record.pop("id")
        records.append(record)
    return json.dumps(records, sort_keys=True)


def _run_script(store):
    """Apply one fixed sequence of operations and capture every observable result."""
    observed = []
    ids = {}

    for name, session, tags in [
        ("travel", "s1", ["Trips"]),
        ("recipes", "s1", []),
        ("taxes", "s2", ["finance"]),
        ("scratch", "s2", None),
    ]:
        ids[name] = store.create(session_id=session, tags=tags).id

    store.append(ids["travel"], Message(role="user", content="Plan a trip to Lisbon"))
    store.append(ids["travel"], Message(role="assistant", content="Hello traveller! Day one: Alfama."))
    store.append(ids["recipes"], Message(role="user", content="A soup recipe " + "please " * 10))
    store.append(ids["recipes"], Message(role="assistant", content="Try a hello-fresh style minestrone"))
    store.append(ids["taxes"], Message(role="assistant", content="Unprompted greeting"))
    store.append(ids["taxes"], Message(role="user", content="How do I file taxes?"))
    store.append(ids["taxes"], Message(role="user", content="Rate the answer 5*5 stars"))
    store.append(ids["travel"], Message(role="user", content="And day two?"))
    store.delete(ids["scratch"])

    observed.append(_without_ids(store.list()))
    observed.append(_without_ids(store.list(session_id="s1")))
    observed.append(_without_ids(store.list(limit=1, skip=1)))
    for query in ("hello", "HELLO", "trip", "finance", "taxes", "zzz", "e", "5*5", "l*n"):
        observed.append(_without_ids(store.search(query)))
    observed.append(_without_ids(store.search("e", limit=2, skip=1)))
    observed.append(store.count())
    return observed


def test_file_and_document_stores_agree(tmp_path):
    file_results = _run_script(FileStore(tmp_path / "conversations.json", clock=TickingClock()))
    document_results = _run_script(DocumentStore(client=FakeSupabaseClient(), clock=TickingClock()))

    assert file_results == document_results


def test_script_exercises_real_matches(tmp_path):
    results = _run_script(FileStore(tmp_path / "conversations.json", clock=TickingClock()))
    hello_matches = json.loads(results[3])

    assert len(hello_matches) == 2
    assert json.loads(results[8]) == []
    assert len(json.loads(results[10])) == 1
    assert json.loads(results[11]) == []
    assert results[-1] == 3
