import pytest
from pydantic import ValidationError

from handover.schemas.submission import Questionnaire
from handover.storage.blob_store import LocalBlobStore, generate_blob_name


def _answers(**overrides) -> dict:
    data = {
        "position_level": "Mid-level",
        "department": "Product",
        "experience_range": "6-12 months",
        "team_size_range": "2-5",
        "main_responsibilities": ["Roadmap", "Customer interviews", "Sprint planning"],
        "critical_skills": ["Communication"],
        "learning_resources": "Product handbook",
        "common_problems": "Scope creep",
        "solutions": "Say no with data",
        "communication_methods": ["Weekly 1-on-1s"],
        "collaboration_tips": "Sit with design",
        "handoff_advice": "Start with the backlog",
        "final_advice": "Talk to customers",
    }
    data.update(overrides)
    return data


def test_valid_questionnaire():
    q = Questionnaire(**_answers())
    assert q.allow_followup is False
    assert q.all_tools() == []


def test_blank_responsibilities_are_dropped_and_counted():
    with pytest.raises(ValidationError):
        Questionnaire(**_answers(main_responsibilities=["Roadmap", "  ", "Sprint planning"]))
    q = Questionnaire(**_answers(main_responsibilities=[" Roadmap ", "", "A", "B"]))
    assert q.main_responsibilities == ["Roadmap", "A", "B"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"department": "Astrology"},
        {"position_level": "Intern"},
        {"team_size_range": "100"},
        {"critical_skills": []},
        {"communication_methods": [" "]},
        {"final_advice": "   "},
        {"handoff_advice": ""},
    ],
)
def test_invalid_questionnaire(overrides):
    with pytest.raises(ValidationError):
        Questionnaire(**_answers(**overrides))


def test_custom_tool_is_appended():
    q = Questionnaire(**_answers(essential_tools=["Jira", ""], custom_tools=" Linear "))
    assert q.all_tools() == ["Jira", "Linear"]


def test_generated_names_hide_original_filename():
    name = generate_blob_name("Q3 salary review - Jane.XLSX")
    stem, ext = name.split(".")
    assert ext == "xlsx"
    assert len(stem) == 32
    assert "Jane" not in name
    assert generate_blob_name("README") != generate_blob_name("README")
    assert "." not in generate_blob_name("weird.ex/t")


def test_blobs_are_immutable(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    store.put("templates", "a.docx", b"v1")
    with pytest.raises(FileExistsError):
        store.put("templates", "a.docx", b"v2")
    assert store.get("templates", "a.docx") == b"v1"


@pytest.mark.parametrize("bucket,name", [("secrets", "a.txt"), ("templates", "../a.txt"), ("templates", "")])
def test_blob_store_rejects_bad_locations(tmp_path, bucket, name):
    store = LocalBlobStore(str(tmp_path))
    with pytest.raises(ValueError):
        store.put(bucket, name, b"x")
