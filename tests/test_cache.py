"""Tests for the hash-keyed dependency cache."""

from __future__ import annotations

import io
import os
import tarfile
import time

from gke_deploy.runtime.cache import CacheKey, DependencyCache, hash_files, runner_os


def write(path, content: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_hash_files_is_order_independent_and_content_sensitive(tmp_path) -> None:
    a = write(tmp_path / "a" / "pom.xml", "<project>a</project>")
    b = write(tmp_path / "b" / "pom.xml", "<project>b</project>")

    first = hash_files([a, b])
    assert first == hash_files([b, a])

    b.write_text("<project>changed</project>", encoding="utf-8")
    assert hash_files([a, b]) != first
    assert hash_files([]) == ""


def test_cache_key_shape(tmp_path) -> None:
    pom = write(tmp_path / "pom.xml", "<project/>")

    key = CacheKey.for_manifests([pom])

    assert key.restore_prefix == f"{runner_os()}-maven"
    assert key.key.startswith(f"{runner_os()}-maven-")
    assert len(key.key.rsplit("-", 1)[1]) == 64


def test_miss_is_informational(tmp_path) -> None:
    cache = DependencyCache(tmp_path / "cache", tmp_path / "m2")

    result = cache.restore(CacheKey(key="Linux-maven-abc", restore_prefix="Linux-maven"))

    assert result.matched_key is None
    assert result.exact_hit is False
    assert [issue.code for issue in result.issues] == ["CACHE_MISS"]
    assert not any(issue.is_error() for issue in result.issues)


def test_save_then_restore_exact(tmp_path) -> None:
    m2 = tmp_path / "m2"
    write(m2 / "repository" / "junit" / "junit.jar", "jar-bytes")
    cache = DependencyCache(tmp_path / "cache", m2)
    key = CacheKey(key="Linux-maven-111", restore_prefix="Linux-maven")

    saved = cache.save(key)
    assert saved.saved
    assert saved.archive_path == tmp_path / "cache" / "Linux-maven-111.tar.gz"
    assert not list((tmp_path / "cache").glob("*.partial"))

    (m2 / "repository" / "junit" / "junit.jar").unlink()
    restored = cache.restore(key)

    assert restored.exact_hit
    assert restored.issues == []
    assert (m2 / "repository" / "junit" / "junit.jar").read_text(encoding="utf-8") == "jar-bytes"


def test_restore_falls_back_to_newest_prefix_match(tmp_path) -> None:
    m2 = tmp_path / "m2"
    write(m2 / "settings.xml", "old")
    cache = DependencyCache(tmp_path / "cache", m2)
    cache.save(CacheKey(key="Linux-maven-old", restore_prefix="Linux-maven"))
    write(m2 / "settings.xml", "newer")
    cache.save(CacheKey(key="Linux-maven-newer", restore_prefix="Linux-maven"))
    older = tmp_path / "cache" / "Linux-maven-old.tar.gz"
    os.utime(older, (time.time() - 3600, time.time() - 3600))
    write(m2 / "settings.xml", "local")

    result = cache.restore(CacheKey(key="Linux-maven-current", restore_prefix="Linux-maven"))

    assert result.matched_key == "Linux-maven-newer"
    assert result.exact_hit is False
    assert (m2 / "settings.xml").read_text(encoding="utf-8") == "newer"


def test_corrupt_archive_is_a_warning(tmp_path) -> None:
    write(tmp_path / "cache" / "Linux-maven-bad.tar.gz", "not a tarball")
    cache = DependencyCache(tmp_path / "cache", tmp_path / "m2")

    result = cache.restore(CacheKey(key="Linux-maven-bad", restore_prefix="Linux-maven"))

    assert [issue.code for issue in result.issues] == ["CACHE_RESTORE_FAILED"]
    assert result.issues[0].severity == "warning"


def test_archive_escaping_destination_is_rejected(tmp_path) -> None:
    archive_path = tmp_path / "cache" / "Linux-maven-evil.tar.gz"
    archive_path.parent.mkdir(parents=True)
    with tarfile.open(archive_path, "w:gz") as archive:
        data = b"owned"
        info = tarfile.TarInfo("../../escaped.txt")
        info.size = len(data)
        archive.addfile(info, io.BytesIO(data))
    cache = DependencyCache(tmp_path / "cache", tmp_path / "home" / "m2")

    result = cache.restore(CacheKey(key="Linux-maven-evil", restore_prefix="Linux-maven"))

    assert result.issues[0].code == "CACHE_RESTORE_FAILED"
    assert not (tmp_path.parent / "escaped.txt").exists()


def test_save_without_directory_is_a_warning(tmp_path) -> None:
    cache = DependencyCache(tmp_path / "cache", tmp_path / "missing")

    result = cache.save(CacheKey(key="Linux-maven-1", restore_prefix="Linux-maven"))

    assert not result.saved
    assert result.issues[0].severity == "warning"


def test_save_keeps_only_newest_entries_per_prefix(tmp_path) -> None:
    cache_root = tmp_path / "cache"
    m2 = tmp_path / "m2"
    write(m2 / "repository" / "settings.xml", "deps")
    now = time.time()
    for age, name in enumerate(["Linux-maven-aaa", "Linux-maven-bbb", "Linux-maven-ccc"], start=1):
        archive = write(cache_root / f"{name}.tar.gz", "old")
        os.utime(archive, (now - age * 100, now - age * 100))
    other_tool = write(cache_root / "Linux-gradle-zzz.tar.gz", "other")
    os.utime(other_tool, (now - 1000, now - 1000))

    result = DependencyCache(cache_root, m2, max_entries=2).save(
        CacheKey(key="Linux-maven-new", restore_prefix="Linux-maven")
    )

    assert result.saved
    assert sorted(path.name for path in result.pruned) == ["Linux-maven-bbb.tar.gz", "Linux-maven-ccc.tar.gz"]
    assert sorted(path.name for path in cache_root.iterdir()) == [
        "Linux-gradle-zzz.tar.gz",
        "Linux-maven-aaa.tar.gz",
        "Linux-maven-new.tar.gz",
    ]


def test_failed_save_prunes_nothing(tmp_path) -> None:
    cache_root = tmp_path / "cache"
    for name in ("Linux-maven-aaa", "Linux-maven-bbb"):
        write(cache_root / f"{name}.tar.gz", "old")

    result = DependencyCache(cache_root, tmp_path / "absent", max_entries=1).save(
        CacheKey(key="Linux-maven-new", restore_prefix="Linux-maven")
    )

    assert result.pruned == []
    assert len(list(cache_root.iterdir())) == 2
