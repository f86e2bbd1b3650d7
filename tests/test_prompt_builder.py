import logging
from pathlib import Path

import pytest

from specwiki.adapters.outbound.yaml_template_repository import YamlTemplateRepository
from specwiki.application.services.prompt_builder import PromptBuilder
from specwiki.application.use_cases.reload_templates import ReloadTemplatesUseCase
from specwiki.domain.document import END_MARKER, START_MARKER, OutputFormat
from specwiki.domain.errors import ErrorKind, PipelineError

PROJECT_TEMPLATES = Path(__file__).parent.parent / "config" / "prompt_templates.yaml"

REQUIREMENTS = "사용자는 이메일과 비밀번호로 로그인할 수 있어야 한다"


@pytest.fixture
def repo():
    return YamlTemplateRepository(PROJECT_TEMPLATES)


@pytest.fixture
def builder(repo):
    return PromptBuilder(repo)


class TestYamlTemplateRepository:
    def test_project_templates_load(self, repo):
        assert repo.list_formats() == ["markdown", "confluence"]
        assert repo.get_prompt_template("markdown").body
        assert "REQUIREMENTS" in repo.get_user_prompt_template()

    def test_unknown_format(self, repo):
        with pytest.raises(ValueError, match="존재하지 않는 출력 형식"):
            repo.get_prompt_template("pdf")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            YamlTemplateRepository(tmp_path / "none.yaml").list_formats()

    def test_missing_user_prompt(self, tmp_path):
        path = tmp_path / "t.yaml"
        path.write_text("formats:\n  markdown:\n    body: x\n", encoding="utf-8")
        with pytest.raises(ValueError, match="user_prompt"):
            YamlTemplateRepository(path).get_user_prompt_template()

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "t.yaml"
        path.write_text("formats:\n  markdown:\n    body: one\nuser_prompt: u\n", encoding="utf-8")
        repo = YamlTemplateRepository(path)
        assert repo.get_prompt_template("markdown").body == "one"

        path.write_text("formats:\n  markdown:\n    body: two\nuser_prompt: u\n", encoding="utf-8")
        repo.reload()
        assert repo.get_prompt_template("markdown").body == "two"

    def test_reload_use_case(self, repo):
        result = ReloadTemplatesUseCase(repo).execute()
        assert result["status"] == "success"
        assert set(result["body_lengths"]) == {"markdown", "confluence"}
        assert result["user_prompt_length"] > 0


class TestPromptBuilder:
    @pytest.mark.parametrize("output_format", list(OutputFormat))
    def test_markers_in_both_prompts(self, builder, output_format):
        prompts = builder.build(REQUIREMENTS, output_format)
        for text in (prompts["system"], prompts["user"]):
            assert START_MARKER in text
            assert END_MARKER in text
        assert REQUIREMENTS in prompts["user"]
        assert output_format.label in prompts["user"]

    def test_markdown_forbids_html(self, builder):
        system = builder.build(REQUIREMENTS, OutputFormat.MARKDOWN)["system"]
        assert "HTML 태그나 Confluence 매크로를 사용하지 마세요" in system
        assert "## 1. User Story" in system

    def test_custom_template_replaces_default_structure(self, builder):
        system = builder.build(REQUIREMENTS, OutputFormat.MARKDOWN, template_content="# 나만의 템플릿")["system"]
        assert "# 나만의 템플릿" in system
        assert "## 2. 버전 관리" not in system

    def test_changes_section(self, builder):
        without = builder.build(REQUIREMENTS, OutputFormat.MARKDOWN)["user"]
        with_changes = builder.build(REQUIREMENTS, OutputFormat.MARKDOWN, changes="보안 요구사항 추가")["user"]
        assert "변경/보완" not in without
        assert "보안 요구사항 추가" in with_changes

    def test_resolved_marker_is_kept(self, builder):
        requirements = f"{REQUIREMENTS} @conf-cnt 기존 로그인 정책 문서@"
        assert "@conf-cnt 기존 로그인 정책 문서@" in builder.build(requirements, OutputFormat.MARKDOWN)["user"]

    @pytest.mark.parametrize("requirements", ["", "   ", "짧은 요구"])
    def test_rejects_empty_or_short_requirements(self, builder, requirements):
        with pytest.raises(PipelineError) as exc:
            builder.build(requirements, OutputFormat.MARKDOWN)
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_rejects_empty_marker(self, builder):
        with pytest.raises(PipelineError) as exc:
            builder.build(f"{REQUIREMENTS} @conf-cnt @", OutputFormat.MARKDOWN)
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_rejects_html_template_for_markdown(self, builder):
        with pytest.raises(PipelineError) as exc:
            builder.build(REQUIREMENTS, OutputFormat.MARKDOWN, template_content="<h1>템플릿</h1>")
        assert exc.value.context["field"] == "template_content"

    def test_markdown_template_for_confluence_only_warns(self, builder, caplog):
        with caplog.at_level(logging.WARNING):
            prompts = builder.build(REQUIREMENTS, OutputFormat.CONFLUENCE, template_content="# 템플릿")
        assert "# 템플릿" in prompts["system"]
        assert "Markdown으로 보입니다" in caplog.text

    def test_undefined_variable_renders_empty(self, tmp_path):
        path = tmp_path / "t.yaml"
        path.write_text(
            "formats:\n  markdown:\n    body: 'A{{ UNKNOWN }}B {{ START_MARKER }}'\n"
            "user_prompt: '{{ REQUIREMENTS }}'\n",
            encoding="utf-8",
        )
        prompts = PromptBuilder(YamlTemplateRepository(path)).build(REQUIREMENTS, OutputFormat.MARKDOWN)
        assert prompts["system"] == f"AB {START_MARKER}"
