"""
Unit tests for the data model: algorithm ids, requests, payload shapes, config.
"""

import dataclasses
import json

import pytest

from pyhashlib import (
    AlgorithmId, DigestResult, EngineConfig, FileFailure, FileTask, InvalidRunRequest,
    ProgressSnapshot, RunPolicy, RunRequest, RunState, TraversalError, TraversalErrorKind,
)


class TestAlgorithmId:
    @pytest.mark.parametrize("name, expected", [
        ("md5", AlgorithmId.MD5),
        ("SHA256", AlgorithmId.SHA256),
        ("sha3-256", AlgorithmId.SHA3_256),
        ("sha3_512", AlgorithmId.SHA3_512),
        (" Blake3 ", AlgorithmId.BLAKE3),
    ])
    def test_parse_accepts_spec_and_wire_spellings(self, name, expected):
        assert AlgorithmId.parse(name) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(InvalidRunRequest, match="Unsupported algorithm: crc32"):
            AlgorithmId.parse("crc32")

    def test_hex_lengths(self):
        assert AlgorithmId.MD5.hex_length == 32
        assert AlgorithmId.SHA1.hex_length == 40
        assert AlgorithmId.SHA256.hex_length == 64
        assert AlgorithmId.SHA3_256.hex_length == 64
        assert AlgorithmId.BLAKE3.hex_length == 64
        assert AlgorithmId.SHA512.hex_length == 128
        assert AlgorithmId.SHA3_512.hex_length == 128

    def test_field_names_match_ui_record_keys(self):
        assert {a.field_name for a in AlgorithmId} == {
            "blake3", "sha3_256", "sha3_512", "sha256", "sha512", "sha1", "md5",
        }


class TestRunRequest:
    def test_create_parses_and_deduplicates_algorithms(self):
        request = RunRequest.create(["a", "b"], ["md5", "MD5", "sha256"])
        assert request.roots == ("a", "b")
        assert request.algorithms == frozenset({AlgorithmId.MD5, AlgorithmId.SHA256})

    def test_single_path_string_is_one_root(self):
        assert RunRequest.create("only.txt", ["md5"]).roots == ("only.txt",)

    def test_single_algorithm_string_is_one_algorithm(self):
        assert RunRequest.create(["a"], "sha256").algorithms == frozenset({AlgorithmId.SHA256})
        assert RunRequest.create(["a"], AlgorithmId.SHA3_256).algorithms == \
            frozenset({AlgorithmId.SHA3_256})

    def test_from_dict_restores_typed_request(self):
        request = RunRequest.create(["a", "b"], ["sha3-256", "md5"])
        restored = RunRequest.from_dict(request.to_dict())
        assert restored == request
        assert restored.roots == ("a", "b")
        assert all(isinstance(a, AlgorithmId) for a in restored.algorithms)

    def test_from_dict_validates(self):
        with pytest.raises(InvalidRunRequest):
            RunRequest.from_dict({"roots": ["a"], "algorithms": []})

    def test_empty_algorithms_rejected(self):
        with pytest.raises(InvalidRunRequest, match="algorithm"):
            RunRequest.create(["a"], [])

    def test_no_paths_rejected(self):
        with pytest.raises(InvalidRunRequest, match="No paths"):
            RunRequest.create([], ["md5"])

    def test_request_is_immutable(self):
        request = RunRequest.create(["a"], ["md5"])
        with pytest.raises(dataclasses.FrozenInstanceError):
            request.roots = ("b",)

    def test_to_dict_orders_algorithms(self):
        request = RunRequest.create(["a"], ["md5", "blake3"])
        assert request.to_dict() == {"roots": ["a"], "algorithms": ["blake3", "md5"]}


class TestPayloads:
    def test_file_task_payload(self):
        task = FileTask(path="/x/a.txt", size=4, canonical_path="/real/a.txt")
        assert task.to_payload() == {"path": "/x/a.txt", "size": 4}

    def test_digest_result_payload_uses_field_names(self):
        result = DigestResult(
            path="/x/a.txt",
            per_algorithm={AlgorithmId.SHA3_256: "ab" * 32, AlgorithmId.MD5: "cd" * 16},
        )
        assert result.to_payload() == {
            "path": "/x/a.txt",
            "sha3_256": "ab" * 32,
            "md5": "cd" * 16,
        }

    def test_failure_payload_has_error_instead_of_digests(self):
        assert FileFailure(path="/x", error="Permission denied").to_payload() == {
            "path": "/x", "error": "Permission denied",
        }

    def test_progress_payload_is_camel_case(self):
        snapshot = ProgressSnapshot(3, 1, 1, 10, 20)
        assert snapshot.files_finished == 2
        assert snapshot.to_payload() == {
            "filesDiscovered": 3,
            "filesCompleted": 1,
            "filesFailed": 1,
            "bytesProcessed": 10,
            "bytesTotal": 20,
        }

    def test_traversal_error_payload(self):
        error = TraversalError("/x/loop", TraversalErrorKind.SYMLINK_CYCLE, "cycle")
        assert error.to_payload() == {"path": "/x/loop", "kind": "symlink_cycle", "message": "cycle"}

    def test_terminal_states(self):
        assert RunState.COMPLETED.is_terminal
        assert RunState.FAILED.is_terminal
        assert not RunState.CANCELLING.is_terminal


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.workers >= 1
        assert config.pending_capacity == 2 * config.workers
        assert config.run_policy == RunPolicy.SUPERSEDE
        assert config.file_timeout is None

    def test_explicit_values(self):
        config = EngineConfig(max_concurrent=3, queue_size=5)
        assert config.workers == 3
        assert config.pending_capacity == 5

    @pytest.mark.parametrize("kwargs", [
        {"max_concurrent": 0},
        {"queue_size": 0},
        {"chunk_size": 0},
        {"file_timeout": 0},
        {"run_policy": "reject"},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown config option"):
            EngineConfig.from_dict({"threads": 4})

    def test_load_from_json(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"max_concurrent": 4, "run_policy": "queue"}))
        config = EngineConfig.load(str(path))
        assert config.max_concurrent == 4
        assert config.run_policy is RunPolicy.QUEUE
