import pytest

from specwiki.application.services import input_sanitizer
from specwiki.domain.errors import ErrorKind, PipelineError


class TestBaseUrl:
    def test_upgrades_cloud_http_to_https(self):
        assert input_sanitizer.sanitize_base_url("http://example.atlassian.net/") == "https://example.atlassian.net"

    def test_keeps_server_http(self):
        assert input_sanitizer.sanitize_base_url("http://wiki.local:8090/confluence") == "http://wiki.local:8090/confluence"

    def test_drops_query_and_fragment(self):
        assert input_sanitizer.sanitize_base_url("https://a.atlassian.net/?x=1#y") == "https://a.atlassian.net"

    @pytest.mark.parametrize("raw", ["", "ftp://a.com", "not a url", "javascript:alert(1)", "https://a.com/\x00"])
    def test_rejects_invalid(self, raw):
        with pytest.raises(PipelineError) as exc:
            input_sanitizer.sanitize_base_url(raw)
        assert exc.value.kind == ErrorKind.VALIDATION


class TestToken:
    def test_accepts_valid(self):
        assert input_sanitizer.validate_token("  abcDEF123+/=_-  ") == "abcDEF123+/=_-"

    @pytest.mark.parametrize("token", ["short", "x" * 501, "has space inside", "bad!chars#here"])
    def test_rejects_invalid_without_echo(self, token):
        with pytest.raises(PipelineError) as exc:
            input_sanitizer.validate_token(token)
        error = exc.value
        assert error.kind == ErrorKind.VALIDATION
        assert token.strip() not in error.message
        assert token.strip() not in (error.technical_details or "")


class TestIdentifiers:
    def test_page_id(self):
        assert input_sanitizer.validate_page_id(" 123 ") == "123"
        with pytest.raises(PipelineError):
            input_sanitizer.validate_page_id("12a")

    def test_space_key(self):
        assert input_sanitizer.validate_space_key("~user_1") == "~user_1"
        with pytest.raises(PipelineError):
            input_sanitizer.validate_space_key("DEV/..")

    @pytest.mark.parametrize("value", ["..", "a/b", "<script>", "x\ny", "onload=1"])
    def test_path_component_rejects(self, value):
        with pytest.raises(PipelineError):
            input_sanitizer.validate_path_component(value)

    def test_query_value_rejects_script(self):
        with pytest.raises(PipelineError):
            input_sanitizer.validate_query_value("javascript:alert(1)")

    def test_title_collapses_whitespace(self):
        assert input_sanitizer.validate_title("  제목   입니다 ") == "제목 입니다"
        with pytest.raises(PipelineError):
            input_sanitizer.validate_title("   ")

    def test_email(self):
        assert input_sanitizer.sanitize_email(" User@Example.com ") == "user@example.com"
        with pytest.raises(PipelineError):
            input_sanitizer.sanitize_email("no-at-sign")


class TestHtml:
    def test_strips_scripts_and_handlers(self):
        html = '<p onclick="x()">안녕</p><script>alert(1)</script><iframe src="x"></iframe><a href="javascript:void(0)">l</a>'
        cleaned = input_sanitizer.sanitize_html(html)
        assert "<script" not in cleaned
        assert "onclick" not in cleaned
        assert "<iframe" not in cleaned
        assert "javascript:" not in cleaned
        assert "<p>안녕</p>" in cleaned

    def test_wiki_html_to_text(self):
        html = "<h1>제목</h1><p>본문 &amp; 내용</p><script>x</script>"
        assert input_sanitizer.sanitize_wiki_html(html) == "제목 본문 & 내용"

    def test_sanitize_text_removes_invisible_chars(self):
        assert input_sanitizer.sanitize_text("a\u200bb<b>c</b>") == "ab c"

    def test_entity_encoded_script_url_removed(self):
        cleaned = input_sanitizer.sanitize_html('<a href="jav&#x61;script:alert(1)" title="t">x</a>')
        assert cleaned == '<a title="t">x</a>'

    def test_confluence_macros_and_text_entities_kept(self):
        html = '<ac:structured-macro ac:name="info"><p>a &lt; b</p></ac:structured-macro>'
        assert input_sanitizer.sanitize_html(html) == html

    def test_wiki_html_drops_style_and_comments(self):
        html = "<style>p {color: red}</style><!-- 메모 --><p>본문</p><noscript>n</noscript>"
        assert input_sanitizer.sanitize_wiki_html(html) == "본문"

    @pytest.mark.parametrize("markup,expected", [
        ("<img src=x onerror=alert(1)>", '<img src="x"/>'),
        ('<a href="vbscript:msgbox(1)" onmouseover="x()">', "<a>"),
        ('<a href="https://example.com">', '<a href="https://example.com">'),
    ])
    def test_sanitize_tag_markup(self, markup, expected):
        assert input_sanitizer.sanitize_tag_markup(markup) == expected
