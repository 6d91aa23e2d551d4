"""Unit tests for FileStore."""
import json

import pytest
from unittest.mock import patch

from fakes import TickingClock
from models.conversation import Message
from models.errors import ChatServiceError, ErrorKind, StorageError
from storage.file_store import FileStore


class TestFileStore:

    def test_creates_data_directory(self, tmp_path):
        path = tmp_path / "nested" / "data" / "conversations.json"
        FileStore(path)
        assert path.parent.is_dir()

    def test_snapshot_is_rewritten_on_every_mutation(self, file_store):
        conversation = file_store.create(session_id="s1")
        file_store.append(conversation.id, Message(role="user", content="hi"))

        with open(file_store.path, encoding="utf-8") as f:
            records = json.load(f)

        assert len(records) == 1
        assert records[0]["id"] == conversation.id
        assert records[0]["sessionId"] == "s1"
        assert records[0]["messages"][0]["content"] == "hi"
        assert records[0]["createdAt"].endswith("Z")

    def test_reload_from_disk(self, tmp_path):
        path = tmp_path / "conversations.json"
        first = FileStore(path, clock=TickingClock())
        conversation = first.create(tags=["saved"])
        first.append(conversation.id, Message(role="user", content="persist me"))
        first.append(conversation.id, Message(role="assistant", content="done"))

        reopened = FileStore(path)
        loaded = reopened.get(conversation.id)

        assert loaded.to_dict() == first.get(conversation.id).to_dict()
        assert loaded.title == "persist me"

    def test_no_temp_files_left_behind(self, file_store):
        file_store.create()
        leftovers = [p.name for p in file_store.path.parent.iterdir() if p.name != file_store.path.name]
        assert leftovers == []

    def test_corrupt_snapshot_refuses_to_load(self, tmp_path):
        path = tmp_path / "conversations.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError):
            FileStore(path)

        assert path.read_text(encoding="utf-8") == "{not json"

    @pytest.mark.parametrize("message", [
        {"role": "system", "content": "hi", "timestamp": None},
        {"role": "user", "content": "", "timestamp": None},
    ])
    def test_invalid_message_in_snapshot_is_storage_error(self, tmp_path, message):
        path = tmp_path / "conversations.json"
        record = {
            "id": "conv_1",
            "title": "New Conversation",
            "messages": [message],
            "sessionId": "s1",
            "tags": [],
            "createdAt": "2026-01-01T12:00:00.000000Z",
            "updatedAt": "2026-01-01T12:00:01.000000Z",
        }
        path.write_text(json.dumps([record]), encoding="utf-8")

        with pytest.raises(StorageError) as exc_info:
            FileStore(path)

        assert exc_info.value.kind == ErrorKind.INTERNAL_ERROR

    def test_failed_save_rolls_back_memory(self, file_store):
        kept = file_store.create()

        with patch("storage.file_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(ChatServiceError) as exc_info:
                file_store.create()
            with pytest.raises(StorageError):
                file_store.append(kept.id, Message(role="user", content="lost"))

        assert exc_info.value.kind == ErrorKind.INTERNAL_ERROR
        assert file_store.count() == 1
        assert file_store.get(kept.id).messages == []

    def test_returned_objects_are_copies(self, file_store):
        conversation = file_store.create()
        conversation.title = "mutated outside"
        conversation.messages.append(Message(role="user", content="sneaky"))

        stored = file_store.get(conversation.id)
        assert stored.title == "New Conversation"
        assert stored.messages == []
