"""
Unit tests for the code synthesizer and AI JSON parsing.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from codeweave.config.models import (
    ImportingContext,
    LLMConfig,
    LLMProvider,
    MissingFileSpec,
    ValidationError,
)
from codeweave.errors import SynthesisError
from codeweave.synthesizer.code_synthesizer import CodeSynthesizer
from codeweave.synthesizer.json_repair import parse_ai_json, repair_truncated_json, try_parse_json
from codeweave.synthesizer.llm_client import (
    LLMError,
    OllamaClient,
    OpenRouterClient,
    create_llm_client,
    strip_markdown_code_blocks,
)


# =============================================================================
# JSON Parsing
# =============================================================================


class TestJsonParsing:
    """Test tolerant parsing of model answers."""

    def test_direct(self):
        assert try_parse_json('{"files": []}') == {"files": []}

    def test_fenced(self):
        response = 'Here you go:\n```json\n{"files": [{"path": "a.ts"}]}\n```\nDone.'
        assert try_parse_json(response) == {"files": [{"path": "a.ts"}]}

    def test_embedded(self):
        assert try_parse_json('Sure! {"fixes": []} hope that helps') == {"fixes": []}

    def test_unparseable(self):
        assert try_parse_json("no json here") is None

    def test_repair_truncated_object(self):
        truncated = '{"files": [{"path": "a.ts", "content": "export const a = 1'
        repaired = repair_truncated_json(truncated)

        assert repaired == {"files": [{"path": "a.ts", "content": "export const a = 1"}]}

    def test_repair_ignores_brackets_in_strings(self):
        truncated = '{"files": [{"path": "a.ts", "content": "const x = [1, {"}, '
        assert repair_truncated_json(truncated) == {"files": [{"path": "a.ts", "content": "const x = [1, {"}]}

    def test_parse_retries_once(self):
        responses = iter(["garbage", '{"files": []}'])
        sleeps = []

        result = parse_ai_json(lambda: next(responses), "generate_wiring", sleep=sleeps.append)

        assert result == {"files": []}
        assert sleeps == [2.0]

    def test_parse_gives_up_after_retry(self):
        with pytest.raises(SynthesisError) as exc_info:
            parse_ai_json(lambda: "garbage", "generate_wiring", sleep=lambda _: None)

        assert exc_info.value.operation == "generate_wiring"
        assert "generate_wiring" in str(exc_info.value)

    def test_llm_error_is_synthesis_error(self):
        def failing():
            raise LLMError("connection reset")

        with pytest.raises(SynthesisError):
            parse_ai_json(failing, "generate_scaffold", sleep=lambda _: None)


# =============================================================================
# Code Synthesizer
# =============================================================================


def _client(*payloads):
    client = MagicMock()
    client.generate.side_effect = [
        payload if isinstance(payload, str) else json.dumps(payload) for payload in payloads
    ]
    return client


class TestCodeSynthesizer:
    """Test prompt construction and answer handling with a mocked LLM client."""

    def test_missing_files_prompt_lists_required_exports(self, nextjs):
        client = _client({"files": [{"path": "src/lib/missing.ts", "content": "export const formatDate = 1"}]})
        spec = MissingFileSpec(
            expected_path="src/lib/missing.ts",
            required_exports={"formatDate"},
            imported_by={"src/app/page.tsx"},
            specifiers={"@/lib/missing"},
        )

        files = CodeSynthesizer(client, retry_delay=0).generate_missing_files([spec], ["src/app/page.tsx"], nextjs)

        assert [f.path for f in files] == ["src/lib/missing.ts"]
        prompt = client.generate.call_args.args[0]
        assert "src/lib/missing.ts: formatDate" in prompt
        assert "src/app/page.tsx imports formatDate from @/lib/missing" in prompt
        assert client.generate.call_args.kwargs["metadata"] == {"operation": "generate_missing_files"}
        assert "Mongoose" in client.generate.call_args.kwargs["system"]

    def test_malformed_entries_are_dropped(self, nextjs):
        client = _client({"files": [
            {"path": "", "content": "x"},
            {"path": "src/a.ts", "content": None},
            "not a dict",
            {"path": "src/ok.ts", "content": "export const ok = 1"},
        ]})

        files = CodeSynthesizer(client).generate_wiring([], [], nextjs)

        assert [f.path for f in files] == ["src/ok.ts"]

    def test_jsx_files_are_renamed(self, nextjs):
        client = _client({"files": [
            {"path": "src/components/card.ts", "content": "export const Card = () => <Card />"}
        ]})

        files = CodeSynthesizer(client).generate_wiring([], [], nextjs)

        assert files[0].path == "src/components/card.tsx"

    def test_scaffold_manifest_is_fixed(self, nextjs):
        manifest = json.dumps({"dependencies": {"@radix-ui/react-button": "^1.0.0", "next": "14.0.0"}})
        client = _client({"files": [
            {"path": "package.json", "content": manifest},
            {"path": "README.md", "content": "# shop"},
        ]})

        files = CodeSynthesizer(client, tech_stack=["Next.js 14"]).generate_scaffold(
            "shop", ["next"], ["src/app/page.tsx"], nextjs
        )

        by_path = {f.path: f.content for f in files}
        assert json.loads(by_path["package.json"])["dependencies"] == {"next": "14.0.0"}
        assert "Next.js 14" in client.generate.call_args.args[0]

    def test_validation_fixes_prompt(self, nextjs):
        client = _client({"fixes": [{"path": "src/b.ts", "content": "export const foo = 1"}]})
        error = ValidationError(file="src/a.ts", line=1, message="Named import 'foo' missing", fixable=True)

        files = CodeSynthesizer(client).generate_validation_fixes(
            [error],
            {"src/b.ts": "export const bar = 1"},
            {"src": ["a.ts", "b.ts"]},
            [ImportingContext(file="src/a.ts", target="src/b.ts", imports=["foo"])],
            nextjs,
        )

        assert files[0].path == "src/b.ts"
        prompt = client.generate.call_args.args[0]
        assert "src/a.ts:1 - Named import 'foo' missing" in prompt
        assert "--- src/b.ts ---" in prompt
        assert "src/: a.ts, b.ts" in prompt
        assert "src/a.ts expects from src/b.ts: foo" in prompt

    def test_toolchain_fixes_read_manifest_section(self, nextjs):
        client = _client({
            "fixes": [{"path": "src/a.ts", "content": "x"}],
            "packageJsonFixes": {"dependencies": {"zod": "^3.22.0"}, "devDependencies": {"@types/node": 20}},
        })

        fix = CodeSynthesizer(client).generate_toolchain_fixes([], {}, "{}", nextjs)

        assert [f.path for f in fix.files] == ["src/a.ts"]
        assert fix.dependencies == {"zod": "^3.22.0"}
        assert fix.dev_dependencies == {"@types/node": "20"}
        assert fix.patches_manifest

    def test_toolchain_fixes_without_manifest_section(self, nextjs):
        client = _client({"fixes": []})
        fix = CodeSynthesizer(client).generate_toolchain_fixes([], {}, None, nextjs)

        assert not fix.patches_manifest

    def test_unparseable_answer_raises(self, nextjs):
        client = _client("nope", "still nope")

        with pytest.raises(SynthesisError):
            CodeSynthesizer(client, retry_delay=0).generate_wiring([], [], nextjs)

        assert client.generate.call_count == 2


# =============================================================================
# LLM Client
# =============================================================================


class TestLLMClient:
    """Test client construction."""

    def test_strip_markdown(self):
        assert strip_markdown_code_blocks("```json\n{}\n```") == "{}"

    def test_openrouter_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ValueError):
            OpenRouterClient(LLMConfig(provider=LLMProvider.OPENROUTER))

    @patch("codeweave.synthesizer.llm_client.OpenAI")
    def test_create_openrouter_client(self, mock_openai):
        client = create_llm_client(LLMConfig(provider=LLMProvider.OPENROUTER, api_key="sk-test"))

        assert isinstance(client, OpenRouterClient)
        assert mock_openai.call_args.kwargs["api_key"] == "sk-test"

    @patch("codeweave.synthesizer.llm_client.OpenAI")
    def test_generate_saves_conversation(self, mock_openai, tmp_dir):
        completion = MagicMock()
        completion.choices[0].message.content = '{"files": []}'
        mock_openai.return_value.chat.completions.create.return_value = completion

        client = OpenRouterClient(LLMConfig(api_key="sk-test"), conversation_log_dir=tmp_dir)
        response = client.generate("prompt", system="system", metadata={"operation": "generate_wiring"})

        assert response == '{"files": []}'
        messages = mock_openai.return_value.chat.completions.create.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]
        assert len(list(tmp_dir.glob("*.json"))) == 1

    @patch("codeweave.synthesizer.llm_client.ollama.Client")
    def test_ollama_sends_prompt_without_answer(self, mock_client, tmp_dir):
        mock_client.return_value.chat.return_value = {"message": {"content": "```json\n{}\n```"}}

        client = OllamaClient(LLMConfig(provider=LLMProvider.OLLAMA), conversation_log_dir=tmp_dir)
        response = client.generate("prompt", system="system")

        assert response == "{}"
        messages = mock_client.return_value.chat.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]
        saved = json.loads(next(tmp_dir.glob("*.json")).read_text())
        assert [m["role"] for m in saved["messages"]] == ["system", "user", "assistant"]

    @patch("codeweave.synthesizer.llm_client.OpenAI")
    def test_api_failure_is_llm_error(self, mock_openai):
        mock_openai.return_value.chat.completions.create.side_effect = RuntimeError("503")

        client = OpenRouterClient(LLMConfig(api_key="sk-test"))
        with pytest.raises(LLMError):
            client.generate("prompt")
