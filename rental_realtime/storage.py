# ============================================
#   Rental Realtime — JSON Persistence
#   Conversation directory + per-conversation message history
#   + optional server-side encryption of message content
# ============================================

import os
import re
import json
import time
import uuid
import base64
import threading

from cryptography.fernet import Fernet, InvalidToken

from rental_realtime.errors import NotFoundError, StorageError, ValidationError
from rental_realtime.registry import to_iso
from rental_realtime.logger import log_info, log_warning, log_exception


# Conversation / message ids end up in file names
SAFE_ID_REGEX = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def is_valid_id(value) -> bool:
    if not isinstance(value, str):
        return False
    return bool(SAFE_ID_REGEX.fullmatch(value))


def _safe_read_json(path: str, default, strict=False):
    """
    Safe JSON reader with fallback.
    Returns `default` on missing file. On parse errors returns `default`
    too, unless `strict` is set: a caller about to rewrite the file gets
    a StorageError instead of silently replacing unreadable data.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        log_exception("storage", f"Error reading {path}")
        if strict:
            raise StorageError(f"Unreadable data file {os.path.basename(path)}: {e}") from e
        return default


def _atomic_write_json(path: str, payload):
    """
    Atomic JSON write to avoid corruption on crash/restart:
    write temp file then os.replace().
    """
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class MessageStore:
    """
    Layout under data_dir:
        conversations.json           { conversation_id: {"title": str, "participants": [user_id]} }
        conversations/<id>.json      [ message, ... ]   (capped at history_limit)

    message = {
        "_id": str,
        "conversationId": str,
        "senderId": str,
        "type": "text",
        "content": str,          (Fernet token when a secret key is set)
        "metadata": dict,
        "sentAt": iso str,
        "readBy": { user_id: iso str },
    }
    """

    def __init__(self, data_dir, history_limit=200, secret_key=""):
        self.data_dir = data_dir
        self.history_limit = history_limit
        self.directory_file = os.path.join(data_dir, "conversations.json")
        self.messages_dir = os.path.join(data_dir, "conversations")
        self._cipher = self._make_cipher(secret_key) if secret_key else None
        self._lock = threading.RLock()

        # message_id → conversation_id (filled on write, lazily on lookup)
        self._message_index = {}

        os.makedirs(self.messages_dir, exist_ok=True)

    # =====================================================
    #   ENCRYPTION HELPERS
    # =====================================================

    @staticmethod
    def _make_cipher(secret_key: str):
        key = base64.urlsafe_b64encode(
            secret_key.encode("utf-8")[:32].ljust(32, b"0")
        )
        return Fernet(key)

    def _encrypt(self, text: str) -> str:
        if self._cipher is None:
            return text
        return self._cipher.encrypt(text.encode("utf-8")).decode("utf-8")

    def _decrypt(self, token: str) -> str:
        if self._cipher is None:
            return token
        try:
            return self._cipher.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            log_warning("storage", "Undecryptable message content (key changed?)")
            return ""

    def _public(self, msg: dict) -> dict:
        m = dict(msg)
        m["content"] = self._decrypt(m.get("content", ""))
        m["readBy"] = dict(m.get("readBy") or {})
        return m

    # =====================================================
    #   CONVERSATION DIRECTORY
    # =====================================================

    def _load_directory(self, strict=False) -> dict:
        data = _safe_read_json(self.directory_file, {}, strict=strict)
        if not isinstance(data, dict):
            if strict:
                raise StorageError("conversations.json invalid format (expected dict)")
            log_warning("storage", "conversations.json invalid format (expected dict), ignoring.")
            return {}
        return data

    def save_conversation(self, conversation_id, participants, title=None):
        if not is_valid_id(conversation_id):
            raise ValidationError(f"Invalid conversation id: {conversation_id!r}")

        with self._lock:
            directory = self._load_directory(strict=True)
            directory[conversation_id] = {
                "title": title,
                "participants": sorted({str(p) for p in participants}),
            }
            try:
                _atomic_write_json(self.directory_file, directory)
            except OSError as e:
                raise StorageError(f"Failed writing conversation directory: {e}") from e

        log_info("storage", f"Conversation saved: {conversation_id} ({len(participants)} participants)")
        return directory[conversation_id]

    def get_conversation(self, conversation_id):
        return self._load_directory().get(str(conversation_id))

    def get_participants(self, conversation_id):
        """Stored participant ids, or None for an unknown conversation."""
        conv = self.get_conversation(conversation_id)
        if conv is None:
            return None
        return list(conv.get("participants") or [])

    def get_user_conversations(self, user_id):
        user_id = str(user_id)
        return [
            cid for cid, conv in self._load_directory().items()
            if user_id in (conv.get("participants") or [])
        ]

    # =====================================================
    #   MESSAGES
    # =====================================================

    def _conversation_path(self, conversation_id):
        return os.path.join(self.messages_dir, f"{conversation_id}.json")

    def _load_messages(self, conversation_id, strict=False):
        data = _safe_read_json(self._conversation_path(conversation_id), [], strict=strict)
        if isinstance(data, list):
            return data
        if strict:
            raise StorageError(f"History of {conversation_id} has an invalid format (expected list)")
        return []

    def _save_messages(self, conversation_id, msgs):
        try:
            _atomic_write_json(self._conversation_path(conversation_id), msgs)
        except OSError as e:
            raise StorageError(f"Failed writing messages of {conversation_id}: {e}") from e

    def create_message(self, conversation_id, sender_id, content, msg_type="text", metadata=None):
        if not is_valid_id(conversation_id):
            raise ValidationError(f"Invalid conversation id: {conversation_id!r}")

        record = {
            "_id": uuid.uuid4().hex,
            "conversationId": conversation_id,
            "senderId": str(sender_id),
            "type": msg_type,
            "content": self._encrypt(content),
            "metadata": dict(metadata or {}),
            "sentAt": to_iso(time.time()),
            "readBy": {},
        }

        with self._lock:
            msgs = self._load_messages(conversation_id, strict=True)
            msgs.append(record)

            if len(msgs) > self.history_limit:
                for dropped in msgs[:-self.history_limit]:
                    self._message_index.pop(dropped.get("_id"), None)
                msgs = msgs[-self.history_limit:]

            self._save_messages(conversation_id, msgs)
            self._message_index[record["_id"]] = conversation_id

        log_info("storage", f"Message appended in {conversation_id} (total={len(msgs)}).")
        return self._public(record)

    def _find_conversation_of(self, message_id):
        cid = self._message_index.get(message_id)
        if cid:
            return cid

        # Cold index (restart): scan the history files once
        for name in os.listdir(self.messages_dir):
            if not name.endswith(".json"):
                continue
            conversation_id = name[:-5]
            for m in self._load_messages(conversation_id):
                self._message_index[m.get("_id")] = conversation_id

        return self._message_index.get(message_id)

    def get_message(self, message_id):
        if not is_valid_id(message_id):
            raise ValidationError(f"Invalid message id: {message_id!r}")

        with self._lock:
            conversation_id = self._find_conversation_of(message_id)
            if conversation_id:
                for m in self._load_messages(conversation_id):
                    if m.get("_id") == message_id:
                        return self._public(m)

        raise NotFoundError(f"Message not found: {message_id}")

    def mark_read(self, message_id, user_id):
        if not is_valid_id(message_id):
            raise ValidationError(f"Invalid message id: {message_id!r}")

        with self._lock:
            conversation_id = self._find_conversation_of(message_id)
            if not conversation_id:
                raise NotFoundError(f"Message not found: {message_id}")

            msgs = self._load_messages(conversation_id, strict=True)
            for m in msgs:
                if m.get("_id") != message_id:
                    continue

                read_by = m.setdefault("readBy", {})
                read_by.setdefault(str(user_id), to_iso(time.time()))
                self._save_messages(conversation_id, msgs)
                return self._public(m)

        raise NotFoundError(f"Message not found: {message_id}")

    def get_messages(self, conversation_id, limit=None):
        if not is_valid_id(conversation_id):
            raise ValidationError(f"Invalid conversation id: {conversation_id!r}")

        msgs = self._load_messages(conversation_id)
        if limit is not None and limit < len(msgs):
            msgs = msgs[-limit:]
        return [self._public(m) for m in msgs]
