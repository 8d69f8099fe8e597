import json

import pytest

from main import CrawlerApp, build_parser, main
from sitecrawl.crawler.orchestrator import CrawlResult


def test_parser_flags():
    args = build_parser().parse_args([
        "https://example.com", "--max-pages", "3", "--no-subpages", "--full-page",
        "--no-cache", "--source-id", "s", "--agent-id", "a", "--project-id", "p",
        "-o", "out.json", "--json-logs",
    ])

    assert args.url == "https://example.com"
    assert args.max_pages == 3
    assert args.no_subpages and args.full_page and args.no_cache and args.json_logs
    assert (args.source_id, args.agent_id, args.project_id) == ("s", "a", "p")
    assert args.output == "out.json"


def test_missing_explicit_config_fails(tmp_path, capsys):
    code = main(["https://example.com", "--config", str(tmp_path / "nope.yaml")])

    assert code == 1
    assert "not found" in capsys.readouterr().out


def test_invalid_config_fails(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("crawler:\n  max_pages: 0\n")

    assert main(["https://example.com", "--config", str(path)]) == 1
    assert "Invalid configuration" in capsys.readouterr().out


def test_results_are_written_as_json(tmp_path):
    output = tmp_path / "out" / "results.json"
    results = [CrawlResult(url="https://example.com", title="Home", content="text"),
               CrawlResult.failed("https://example.com/x", "HTTP 404")]

    CrawlerApp()._write_results(results, str(output))

    data = json.loads(output.read_text(encoding='utf-8'))
    assert data[0]['title'] == "Home"
    assert data[1] == {'url': "https://example.com/x", 'title': '', 'content': '',
                       'links': [], 'images': [], 'error': "HTTP 404"}


@pytest.mark.parametrize("value", ["0", "-3"])
def test_max_pages_below_one_is_rejected(value, capsys):
    assert main(["https://example.com", "--max-pages", value]) == 1
    assert "--max-pages must be at least 1" in capsys.readouterr().out
