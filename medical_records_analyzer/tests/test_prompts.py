from app.prompts import build_system_prompt, document_messages, text_messages, truncate_text


def test_system_prompt_includes_code_table():
    prompt = build_system_prompt("HEARING (38 CFR § 4.87):\n- DC 6260: Tinnitus")
    assert "DC 6260: Tinnitus" in prompt
    assert "MENTAL_HEALTH" in prompt
    assert "JSON array" in prompt


def test_truncate_text_adds_note():
    excerpt, note = truncate_text("x" * 8000, 1600)
    assert len(excerpt) == 1600
    assert "first 2 of about 10 pages" in note


def test_truncate_text_untouched():
    assert truncate_text("short", 100) == ("short", "")


def test_text_messages_mention_truncation():
    messages = text_messages("sys", "big.pdf", "y" * 5000, 800)
    assert messages[0] == {"role": "system", "content": "sys"}
    assert "NOTE: This document was truncated" in messages[1]["content"]


def test_document_messages_label():
    messages = document_messages("sys", "scan.pdf", b"%PDF", "pages 11-20 of 25")
    text_part, file_part = messages[1]["content"]
    assert "pages 11-20 of 25" in text_part["text"]
    assert file_part["file"]["filename"] == "scan.pdf"
    assert file_part["file"]["file_data"].startswith("data:application/pdf;base64,")
