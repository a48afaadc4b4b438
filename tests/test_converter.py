"""Unit tests for PromptConverter."""

from __future__ import annotations

from unittest.mock import patch

from gmail_chatterbox.core.converter import PromptConverter, looks_like_html

HTML_BODY = "<html><body><p>Hello, this is <b>HTML</b>.</p></body></html>"


class TestLooksLikeHtml:
    def test_detects_html(self) -> None:
        assert looks_like_html(HTML_BODY) is True
        assert looks_like_html("line one<br/>line two") is True

    def test_plain_text(self) -> None:
        assert looks_like_html("a < b and c > d") is False


class TestConvert:
    """HTML body conversion via trafilatura."""

    def test_plain_text_passes_through(self) -> None:
        with patch("gmail_chatterbox.core.converter.trafilatura") as mock_traf:
            result = PromptConverter().convert("just text")

        assert result == "just text"
        mock_traf.extract.assert_not_called()

    def test_html_extracted_with_recall_params(self) -> None:
        with patch("gmail_chatterbox.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.return_value = "Hello, this is HTML."
            result = PromptConverter().convert(HTML_BODY)

        assert result == "Hello, this is HTML."
        mock_traf.extract.assert_called_once_with(
            HTML_BODY,
            output_format="txt",
            favor_recall=True,
            include_links=True,
            include_tables=True,
        )

    def test_falls_back_when_trafilatura_returns_none(self) -> None:
        with patch("gmail_chatterbox.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.return_value = None
            result = PromptConverter().convert(HTML_BODY)

        assert result == HTML_BODY

    def test_falls_back_when_trafilatura_raises(self) -> None:
        with patch("gmail_chatterbox.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.side_effect = RuntimeError("lxml exploded")
            result = PromptConverter().convert(HTML_BODY)

        assert result == HTML_BODY
