import pytest

from vecinito.errors import ConfigLoadError
from vecinito.prompt_loader import agent_prompt_path, load_agent_prompt, load_prompt


def test_load_prompt_strips_bom(tmp_path):
    path = tmp_path / "prompt.txt"
    path.write_bytes("\ufeffHola veci".encode("utf-8"))

    assert load_prompt(path) == "Hola veci"


def test_load_prompt_ignores_invalid_bytes(tmp_path):
    path = tmp_path / "prompt.txt"
    path.write_bytes(b"Hola \xff veci")

    assert load_prompt(path) == "Hola  veci"


def test_agent_prompt_path_follows_modelfile_convention(tmp_path):
    assert agent_prompt_path(tmp_path, "el-vecinito") == tmp_path / "el-vecinito-ModelFile.txt"


def test_load_agent_prompt_reads_agent_file(prompts_dir):
    assert load_agent_prompt(prompts_dir, "el-vecinito") == "Eres El Vecinito."


def test_missing_agent_file_raises_config_error(prompts_dir):
    with pytest.raises(ConfigLoadError) as excinfo:
        load_agent_prompt(prompts_dir, "la-vecinita")

    assert "la-vecinita" in excinfo.value.message
    assert excinfo.value.status_code == 500


@pytest.mark.parametrize("agent", ["../secret", "a/b", "", ".hidden"])
def test_agent_ids_cannot_escape_prompts_dir(prompts_dir, agent):
    with pytest.raises(ConfigLoadError):
        load_agent_prompt(prompts_dir, agent)
