from datetime import datetime, timezone

from asc.schemas import Conversation


def test_conversation_json_omits_empty_context():
    conv = Conversation(id="1", timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc), message="m", response="r")
    text = conv.to_json()
    assert '"context"' not in text
    assert '"file_path": ""' in text


def test_conversation_parses_offset_timestamps():
    conv = Conversation.model_validate_json(
        '{"id": "20250706023320", "timestamp": "2025-07-06T02:33:20.123456+09:00",'
        ' "message": "m", "response": "r", "file_path": "/x.json", "context": "c"}'
    )
    assert conv.timestamp.utcoffset().total_seconds() == 9 * 3600
    assert conv.context == "c"
