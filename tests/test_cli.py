"""
Tests for the command-line entry point and prompt templates.
"""

import pytest

import killer.loop as loop_module
from killer.cli import build_parser, main
from killer.llm import ChatResponse
from killer.prompts import PromptLibrary, PromptNotFoundError


class FakeLLM:
    def __init__(self, content: str = "All done.") -> None:
        self.content = content
        self.calls: list[list[dict]] = []
        self.closed = False

    def chat(self, messages, tools=None):
        self.calls.append(messages)
        return ChatResponse(content=self.content, tool_calls=[], finish_reason="stop")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Isolate the CLI from the real home directory and environment."""
    home = tmp_path / "home"
    prompts = tmp_path / "prompts"
    home.mkdir()
    prompts.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for name in ["KILLER_API_KEY", "GLM_CODING_API_KEY", "KILLER_TOOLS_DIR", "KILLER_INTERACTIVE"]:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("KILLER_PROMPTS_DIR", str(prompts))
    monkeypatch.setenv("KILLER_TASK_FILE", str(tmp_path / "tasks.json"))
    return prompts


@pytest.fixture
def fake_llm(monkeypatch):
    llm = FakeLLM()
    monkeypatch.setattr(loop_module, "LLMClient", lambda config: llm)
    return llm


class TestPromptLibrary:
    """Test prompt template loading."""

    def test_names_and_load(self, tmp_path) -> None:
        (tmp_path / "reviewer.md").write_text("You review code.")
        (tmp_path / "notes.txt").write_text("ignored")

        library = PromptLibrary(tmp_path)

        assert library.names() == ["reviewer"]
        assert library.load("reviewer") == "You review code."

    def test_missing_prompt(self, tmp_path) -> None:
        with pytest.raises(PromptNotFoundError):
            PromptLibrary(tmp_path).load("missing")

    def test_path_traversal_rejected(self, tmp_path) -> None:
        with pytest.raises(PromptNotFoundError, match="Invalid prompt name"):
            PromptLibrary(tmp_path).load("../secrets")

    def test_missing_directory(self, tmp_path) -> None:
        assert PromptLibrary(tmp_path / "none").names() == []


class TestCli:
    """Test the killer command."""

    def test_parser_flags(self) -> None:
        args = build_parser().parse_args(
            ["--model", "m", "--max-iterations", "3", "--interactive", "-v", "do it"],
        )

        assert args.model == "m"
        assert args.max_iterations == 3
        assert args.interactive is True
        assert args.verbose is True
        assert args.args == ["do it"]

    def test_list_tools(self, cli_env, capsys) -> None:
        assert main(["list-tools"]) == 0

        out = capsys.readouterr().out
        assert "shell_executor" in out
        assert "task_planner" in out

    def test_list_prompts(self, cli_env, capsys) -> None:
        (cli_env / "devops.md").write_text("You are a DevOps engineer.")

        assert main(["list-prompts"]) == 0
        assert "devops" in capsys.readouterr().out

    def test_missing_api_key_fails(self, cli_env) -> None:
        assert main(["hello"]) == 1

    def test_successful_run_prints_answer(self, cli_env, fake_llm, monkeypatch, capsys) -> None:
        monkeypatch.setenv("KILLER_API_KEY", "test-key")

        assert main(["-q", "hello"]) == 0

        assert capsys.readouterr().out.strip() == "All done."
        assert fake_llm.closed is True

    def test_prompt_name_as_first_argument(self, cli_env, fake_llm, monkeypatch) -> None:
        monkeypatch.setenv("KILLER_API_KEY", "test-key")
        (cli_env / "devops.md").write_text("You are a DevOps engineer.")

        assert main(["-q", "devops", "check disk usage"]) == 0

        sent = fake_llm.calls[0]
        assert sent[0] == {"role": "system", "content": "You are a DevOps engineer."}
        assert sent[1] == {"role": "user", "content": "check disk usage"}

    def test_unknown_prompt_fails(self, cli_env, fake_llm, monkeypatch) -> None:
        monkeypatch.setenv("KILLER_API_KEY", "test-key")

        assert main(["-q", "--prompt", "nope", "hello"]) == 1
        assert fake_llm.calls == []

    def test_failed_run_exit_status(self, cli_env, monkeypatch) -> None:
        class ToolLooper(FakeLLM):
            def chat(self, messages, tools=None):
                self.calls.append(messages)
                n = len(self.calls)
                return ChatResponse.from_api_response({
                    "choices": [{
                        "finish_reason": "tool_calls",
                        "message": {"tool_calls": [{
                            "id": f"c{n}",
                            "function": {"name": "calculator", "arguments": '{"expression": "1"}'},
                        }]},
                    }],
                })

        llm = ToolLooper()
        monkeypatch.setattr(loop_module, "LLMClient", lambda config: llm)
        monkeypatch.setenv("KILLER_API_KEY", "test-key")

        assert main(["-q", "--max-iterations", "2", "loop"]) == 1
        assert len(llm.calls) == 2
