from __future__ import annotations
import shlex
from dataclasses import replace
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from .errors import MissingTestMarkersError, NotSupportedError
from .models import LanguageProfile, Mode

# Bảng profile mặc định. {root}: thư mục workspace nhìn từ bên trong môi trường,
# {source}: tên file nguồn, {stem}: tên file bỏ đuôi. {job} trong tên file được thay bằng job id.
DEFAULT_PROFILES: Dict[str, LanguageProfile] = {
    "javascript": LanguageProfile(
        id="javascript",
        image="node:18",
        source_name="script-{job}.js",
        run_command=("node", "{root}/{source}"),
    ),
    "python": LanguageProfile(
        id="python",
        image="python:3.9-slim",
        source_name="script-{job}.py",
        run_command=("python", "{root}/{source}"),
        test_source_name="test_{job}.py",
        # unittest nhận path tương đối với cwd (= {root})
        test_command=("python", "-m", "unittest", "{source}"),
        test_markers=("unittest.TestCase", "self.assert"),
    ),
    "cpp": LanguageProfile(
        id="cpp",
        image="gcc:12",
        source_name="script-{job}.cpp",
        # && : compile lỗi thì không bao giờ chạy binary
        run_command=("sh", "-c", "g++ {root}/{source} -o {root}/{stem}.out && {root}/{stem}.out"),
        artifacts=("{stem}.out",),
    ),
    "java": LanguageProfile(
        id="java",
        image="openjdk:11-slim",
        source_name="Main.java",
        run_command=("sh", "-c", "javac {root}/{source} && java -cp {root} Main"),
        artifacts=("Main.class",),
    ),
    "go": LanguageProfile(
        id="go",
        image="golang:latest",
        source_name="main-{job}.go",
        run_command=("go", "run", "{root}/{source}"),
    ),
    "ruby": LanguageProfile(
        id="ruby",
        image="ruby:3.2-slim",
        source_name="script-{job}.rb",
        run_command=("ruby", "{root}/{source}"),
        test_image="ruby-rspec:3.2-slim",
        test_source_name="test-{job}.rb",
        test_command=("rspec", "{root}/{source}", "--format", "documentation"),
        test_markers=("describe", "expect", "it "),
    ),
}


class LanguageRegistry:
    """Bảng tra cứu chỉ-đọc: language -> LanguageProfile."""

    def __init__(self, profiles: Mapping[str, LanguageProfile]):
        self._profiles = MappingProxyType(dict(profiles))

    def resolve(self, language: str, mode: Mode) -> LanguageProfile:
        profile = self._profiles.get(normalize_language(language))
        if profile is None or not profile.supports(mode):
            raise NotSupportedError(str(language), mode.value)
        return profile

    def languages(self, mode: Mode = Mode.RUN) -> List[str]:
        return [k for k, p in self._profiles.items() if p.supports(mode)]

    def images(self) -> List[str]:
        seen: Dict[str, None] = {}
        for p in self._profiles.values():
            seen[p.image] = None
            if p.test_image:
                seen[p.test_image] = None
        return list(seen)


def normalize_language(language: str) -> str:
    return str(language or "").strip().lower()


def build_registry(image_overrides: Optional[Mapping[str, str]] = None) -> LanguageRegistry:
    """
    Ghép bảng mặc định với override image từ config:
      images: {python: "python:3.12-slim", "ruby:test": "my-rspec:latest"}
    """
    profiles = dict(DEFAULT_PROFILES)
    for key, image in (image_overrides or {}).items():
        lang, _, kind = str(key).partition(":")
        lang = normalize_language(lang)
        if lang not in profiles:
            continue
        if kind == "test":
            profiles[lang] = replace(profiles[lang], test_image=image)
        else:
            profiles[lang] = replace(profiles[lang], image=image)
    return LanguageRegistry(profiles)


def check_test_markers(profile: LanguageProfile, code: str) -> None:
    """Code test phải chứa ít nhất một marker của framework, nếu không thì fail sớm."""
    markers = profile.test_markers
    if not markers:
        return
    if not any(m in code for m in markers):
        raise MissingTestMarkersError(profile.id, markers)


def source_filename(profile: LanguageProfile, mode: Mode, job_id: str) -> str:
    return profile.source_for(mode).replace("{job}", job_id)


def artifact_names(profile: LanguageProfile, source: str) -> List[str]:
    stem = PurePosixPath(source).stem
    return [a.replace("{stem}", stem) for a in profile.artifacts]


def render_command(template: Iterable[str], root: str, source: str) -> List[str]:
    """
    Thay placeholder trong template. Với dạng `sh -c "<script>"` thì giá trị được
    quote trước khi nhét vào script.
    """
    parts = list(template)
    stem = PurePosixPath(source).stem
    shell = len(parts) >= 3 and parts[0] == "sh" and parts[1] == "-c"
    out: List[str] = []
    for i, part in enumerate(parts):
        if shell and i == 2:
            vals = {"root": shlex.quote(root), "source": shlex.quote(source), "stem": shlex.quote(stem)}
        else:
            vals = {"root": root, "source": source, "stem": stem}
        out.append(part.format(**vals))
    return out
