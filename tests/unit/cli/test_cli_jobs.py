"""Tests for the jobs CLI commands."""

import json
from pathlib import Path

import click
import pytest

from sukudo.cli import main
from sukudo.cli.jobs import _parse_param
from sukudo.db import JobStatus, get_job
from sukudo.jobs.events import JobEventLog
from sukudo.jobs.queue import claim_next_job, complete_job, fail_job


class TestParseParam:
    def test_json_value(self):
        assert _parse_param("voiceGainDb=6") == ("voiceGainDb", 6)
        assert _parse_param("clipRepair=true") == ("clipRepair", True)

    def test_plain_string(self):
        assert _parse_param("quality=max") == ("quality", "max")

    def test_missing_separator(self):
        with pytest.raises(click.BadParameter):
            _parse_param("quality")


class TestSubmit:
    """sukudo jobs submit."""

    def test_queues_stored_inputs(self, runner, cli_obj, db_conn):
        result = runner.invoke(
            main,
            [
                "jobs",
                "submit",
                "inputs/u/talk.wav",
                "--param",
                "quality=max",
                "--params-json",
                '{"lufs": -16, "quality": "fast"}',
                "--json",
            ],
            obj=cli_obj,
        )

        assert result.exit_code == 0, result.output
        body = json.loads(result.output)
        assert body["input_urls"] == ["inputs/u/talk.wav"]
        assert body["params"]["quality"] == "Max"
        assert body["params"]["lufs"] == "-16"
        assert get_job(db_conn, body["id"]).status == JobStatus.QUEUED

    def test_upload_stores_file_first(self, runner, cli_obj, config, temp_dir):
        local = temp_dir / "intro.mp3"
        local.write_bytes(b"ID3")

        result = runner.invoke(
            main,
            ["jobs", "submit", "inputs/u/a.wav", "--upload", str(local), "--json"],
            obj=cli_obj,
        )

        assert result.exit_code == 0, result.output
        urls = json.loads(result.output)["input_urls"]
        assert urls[0] == "inputs/u/a.wav"
        assert urls[1].startswith("inputs/") and urls[1].endswith("/intro.mp3")
        assert (Path(config.storage.root) / urls[1]).read_bytes() == b"ID3"

    def test_no_inputs(self, runner, cli_obj):
        result = runner.invoke(main, ["jobs", "submit"], obj=cli_obj)
        assert result.exit_code == 1
        assert "Invalid job (input_urls)" in result.output

    def test_bad_params_json(self, runner, cli_obj):
        result = runner.invoke(
            main,
            ["jobs", "submit", "inputs/u/a.wav", "--params-json", "[1]"],
            obj=cli_obj,
        )
        assert result.exit_code == 2
        assert "must be a JSON object" in result.output


class TestListAndShow:
    """sukudo jobs list / show / events / status."""

    def test_list_empty(self, runner, cli_obj):
        result = runner.invoke(main, ["jobs", "list"], obj=cli_obj)
        assert result.exit_code == 0
        assert "No jobs found." in result.output

    def test_list_filters_by_status(self, runner, cli_obj, db_conn, make_job):
        make_job(db_conn)
        running = make_job(db_conn, status=JobStatus.RUNNING)

        result = runner.invoke(
            main, ["jobs", "list", "--status", "running", "--json"], obj=cli_obj
        )
        assert [job["id"] for job in json.loads(result.output)] == [running.id]

    def test_list_table(self, runner, cli_obj, db_conn, make_job):
        job = make_job(db_conn)
        result = runner.invoke(main, ["jobs", "list"], obj=cli_obj)
        assert job.id[:8] in result.output
        assert "queued" in result.output

    def test_show_by_prefix(self, runner, cli_obj, db_conn, make_job):
        job = make_job(db_conn, input_urls=["inputs/u/talk.wav"])
        claim_next_job(db_conn, "w1")
        fail_job(db_conn, job.id, "w1", "talk.wav: ffmpeg exited with code 1")

        result = runner.invoke(main, ["jobs", "show", job.id[:6]], obj=cli_obj)

        assert result.exit_code == 0, result.output
        assert f"Job: {job.id}" in result.output
        assert "FAILED" in result.output
        assert "inputs/u/talk.wav" in result.output
        assert "ffmpeg exited with code 1" in result.output

    def test_show_unknown(self, runner, cli_obj):
        result = runner.invoke(main, ["jobs", "show", "deadbeef"], obj=cli_obj)
        assert result.exit_code == 1
        assert "Job not found" in result.output

    def test_show_invalid_id(self, runner, cli_obj):
        result = runner.invoke(main, ["jobs", "show", "xyz!"], obj=cli_obj)
        assert result.exit_code == 1
        assert "Invalid job id" in result.output

    def test_events_in_order(self, runner, cli_obj, db_conn, make_job):
        job = make_job(db_conn)
        claim_next_job(db_conn, "w1")
        log = JobEventLog(db_conn, job.id)
        first = log.started(["talk.wav"])
        log.progress("enhance", file="talk.wav", mode="fast")
        complete_job(db_conn, job.id, "w1", [f"outputs/{job.id}/talk_enhanced.wav"])

        result = runner.invoke(
            main, ["jobs", "events", job.id, "--after", str(first)], obj=cli_obj
        )

        lines = result.output.strip().splitlines()
        assert len(lines) == 2
        assert "progress" in lines[0]
        assert "Completed" in lines[1]

    def test_events_json(self, runner, cli_obj, db_conn, make_job):
        job = make_job(db_conn)
        JobEventLog(db_conn, job.id).started(["talk.wav"])

        result = runner.invoke(
            main, ["jobs", "events", job.id, "--json"], obj=cli_obj
        )
        (event,) = json.loads(result.output)
        assert event["message"] == "Started"
        assert event["data"] == {"files": ["talk.wav"]}

    def test_status(self, runner, cli_obj, db_conn, make_job):
        make_job(db_conn)
        make_job(db_conn, status=JobStatus.COMPLETED)

        result = runner.invoke(main, ["jobs", "status"], obj=cli_obj)
        assert "Queued:        1" in result.output
        assert "Total:         2" in result.output


class TestReap:
    """sukudo jobs reap."""

    def test_nothing_to_reap(self, runner, cli_obj):
        result = runner.invoke(main, ["jobs", "reap"], obj=cli_obj)
        assert result.exit_code == 0
        assert "No stale jobs." in result.output

    def test_reaps_silent_worker(self, runner, cli_obj, db_conn, make_job):
        job = make_job(db_conn)
        claim_next_job(db_conn, "w1")
        db_conn.execute(
            "UPDATE jobs SET worker_heartbeat = '2000-01-01T00:00:00Z' WHERE id = ?",
            (job.id,),
        )
        db_conn.commit()

        result = runner.invoke(
            main, ["jobs", "reap", "--timeout", "60"], obj=cli_obj
        )

        assert "Failed 1 stale job(s)" in result.output
        assert get_job(db_conn, job.id).status == JobStatus.FAILED
