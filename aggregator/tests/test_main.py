"""Tests for the service's request-to-observation mapping and report output."""

import pytest

from aggregator.main import format_report, observation, section
from aggregator.scheduler import Report, ReportEntry
from aggregator.topk import Entry


class TestSection:
    @pytest.mark.parametrize("path, expected", [
        ("/pages/about", "/pages"),
        ("/pages", "/pages"),
        ("/", "/"),
        ("", "/"),
        ("/api/v1/users?id=3", "/api"),
        ("/search?q=a/b", "/search"),
        ("/docs#intro", "/docs"),
    ])
    def test_first_segment(self, path, expected):
        assert section(path) == expected


class TestObservation:
    def test_page_request(self):
        assert observation({"host": "a.example.com", "path": "/blog/12"}) == ("a.example.com", "/blog")

    @pytest.mark.parametrize("path", ["/static/app.js", "/style.css", "/img/logo.PNG", "/x.json?v=2"])
    def test_assets_are_skipped(self, path):
        assert observation({"host": "a.example.com", "path": path}) is None

    @pytest.mark.parametrize("event", [
        {"path": "/"},
        {"host": "", "path": "/"},
        {"host": "a.example.com"},
        {"host": 7, "path": "/"},
    ])
    def test_malformed_events_are_skipped(self, event):
        assert observation(event) is None


class TestFormatReport:
    def test_lists_sites_in_rank_order(self):
        report = Report(timestamp=0.0, top=[
            ReportEntry("b.example.com", 12, [Entry("/api", 8), Entry("/", 4)]),
            ReportEntry("a.example.com", 3, []),
        ])
        lines = format_report(report).splitlines()
        assert lines[0] == "Top 2 sites"
        assert "1. b.example.com" in lines[1]
        assert "hits=12" in lines[1]
        assert "/api=8" in lines[1]
        assert "2. a.example.com" in lines[2]

    def test_empty_report(self):
        assert format_report(Report(timestamp=0.0, top=[])) == "Top 0 sites"
