"""Tests for planning and applying manifest updates."""

import pytest

from core.errors import ManifestError
from core.models import Dependency, PackageSource, Project, ProjectList, SelectionSettings, UpdateAction
from core.parse_node import parse_package_json
from core.patch import (
    NOT_FOUND_MESSAGE,
    NOT_REWRITTEN_MESSAGE,
    apply_updates,
    patch_manifest_text,
    plan_updates,
    replace_version_in_line,
    update_manifest,
    update_projects,
)
from core.select import assign_versions
from core.version import parse_version

PACKAGE_JSON = """{
  "name": "web",
  "dependencies": {
    "@pkg": "^23.1.0",
    "react": "~18.1.0",
    "lodash": "4.17.21"
  }
}"""


def resolved(name, current, known, source=PackageSource.NPM, order=0):
    dependency = Dependency.declared(name, current, source, order=order)
    return assign_versions(dependency, [parse_version(v) for v in known])


def npm_dependencies():
    return [
        resolved("@pkg", "^23.1.0", ["23.1.1", "23.1.0"], order=0),
        resolved("react", "~18.1.0", ["18.3.1", "18.1.0"], order=1),
        resolved("lodash", "4.17.21", ["4.17.21"], order=2),
    ]


class TestReplaceVersionInLine:
    """Test single line rewrites."""

    @pytest.mark.parametrize("line,expected", [
        ('    "@pkg": "^23.1.0",', '    "@pkg": "^23.1.1",'),
        ('"@pkg": "~23.1.0"', '"@pkg": "~23.1.1"'),
        ('"@pkg":"23.1.0",', '"@pkg":"23.1.1",'),
        ('"@pkg": ">=23.1.0 <24.0.0",', '"@pkg": ">=23.1.1 <24.0.0",'),
    ])
    def test_npm_line(self, line, expected):
        """Should replace only the version token and keep operators."""
        assert replace_version_in_line(line, "@pkg", "23.1.1", PackageSource.NPM) == expected

    def test_npm_other_package_untouched(self):
        """Should leave lines for other packages alone."""
        line = '    "@pkg-extra": "^23.1.0",'
        assert replace_version_in_line(line, "@pkg", "23.1.1", PackageSource.NPM) == line

    def test_nuget_line(self):
        """Should rewrite the Version attribute of a reference."""
        line = '    <PackageReference Include="Newtonsoft.Json" Version="12.0.1" />'
        assert replace_version_in_line(line, "Newtonsoft.Json", "13.0.3", PackageSource.NUGET) == (
            '    <PackageReference Include="Newtonsoft.Json" Version="13.0.3" />'
        )

    def test_unknown_source(self):
        with pytest.raises(ValueError):
            replace_version_in_line('"x": "1.0.0"', "x", "2.0.0", PackageSource.UNKNOWN)


class TestPlanUpdates:
    """Test update planning."""

    def test_plan_actions(self):
        """Should update outdated records and skip current ones, in order."""
        dependencies = list(reversed(npm_dependencies()))
        plan = plan_updates(dependencies)

        assert [item.dependency.name for item in plan] == ["@pkg", "react", "lodash"]
        assert [item.action for item in plan] == [UpdateAction.UPDATE, UpdateAction.UPDATE, UpdateAction.SKIP]
        assert plan[1].target.normalized == "18.3.1"

    def test_excludes_failed_and_blank(self):
        """Should leave out failed records and records without version text."""
        failed = resolved("a", "1.0.0", ["2.0.0"])
        failed.set_failure("lookup failed")
        blank = Dependency.declared("b", "", PackageSource.NPM)
        assert plan_updates([failed, blank]) == []

    def test_plan_is_repeatable(self):
        """Should plan the same actions when called twice."""
        dependencies = npm_dependencies()
        first = [(p.action, p.target) for p in plan_updates(dependencies)]
        second = [(p.action, p.target) for p in plan_updates(dependencies)]
        assert first == second

    def test_settings_change_targets(self):
        """Should bind settings given at planning time."""
        dependency = resolved("express", "4.18.0", ["5.0.0", "4.19.2", "4.18.0"])
        plan = plan_updates([dependency], SelectionSettings(keep_major=True))
        assert plan[0].target.normalized == "4.19.2"


class TestApplyUpdates:
    """Test applying plans to manifest text."""

    def test_patch_package_json(self):
        """Should rewrite outdated lines and keep the rest byte for byte."""
        content, result = patch_manifest_text(PACKAGE_JSON, npm_dependencies())

        assert '"@pkg": "^23.1.1",' in content
        assert '"react": "~18.3.1",' in content
        assert '"lodash": "4.17.21"' in content
        assert content.count("\n") == PACKAGE_JSON.count("\n")
        assert result.updated_count == 2
        assert result.failed_count == 0

    def test_patched_text_parses_to_targets(self):
        """Should produce a manifest that declares the desired versions."""
        dependencies = npm_dependencies()
        content, _ = patch_manifest_text(PACKAGE_JSON, dependencies)
        reparsed = {d.name: d.current_version for d in parse_package_json(content)}
        for dependency in dependencies:
            assert reparsed[dependency.name] == dependency.desired_version

    def test_missing_declaration(self):
        """Should fail one record and still update its siblings."""
        dependencies = npm_dependencies() + [resolved("ghost", "1.0.0", ["2.0.0"], order=3)]
        content, result = patch_manifest_text(PACKAGE_JSON, dependencies)

        ghost = [o for o in result.outcomes if o.dependency.name == "ghost"][0]
        assert ghost.failed
        assert ghost.message == NOT_FOUND_MESSAGE
        assert result.updated_count == 2

    def test_unrewritable_version(self):
        """Should report a declaration whose version text cannot be replaced."""
        dependency = resolved("next", "latest", ["14.2.0"])
        content = '{"dependencies": {\n  "next": "latest"\n}}'
        new_content, result = patch_manifest_text(content, [dependency])

        assert new_content == content
        assert result.outcomes[0].failed
        assert result.outcomes[0].message == NOT_REWRITTEN_MESSAGE

    def test_exception_is_recorded(self, monkeypatch):
        """Should record an unexpected error on its record only."""
        real_replace = replace_version_in_line

        def flaky(line, name, new_version, source):
            if name == "react":
                raise RuntimeError("boom")
            return real_replace(line, name, new_version, source)

        monkeypatch.setattr("core.patch.replace_version_in_line", flaky)
        _, result = apply_updates(plan_updates(npm_dependencies()), PACKAGE_JSON.split("\n"))

        messages = {o.dependency.name: o.message for o in result.outcomes}
        assert messages["react"] == "boom"
        assert result.updated_count == 1

    def test_patch_csproj(self, sample_csproj):
        """Should rewrite NuGet references."""
        dependencies = [
            resolved("Newtonsoft.Json", "12.0.1", ["13.0.3", "12.0.1"], PackageSource.NUGET, 0),
            resolved("Serilog", "3.0.0", ["3.0.0"], PackageSource.NUGET, 1),
        ]
        content, result = patch_manifest_text(sample_csproj, dependencies)

        assert 'Include="Newtonsoft.Json" Version="13.0.3"' in content
        assert 'Include="Serilog" Version="3.0.0"' in content
        assert 'Include="Dapper" Version="2.0.0"' in content
        assert result.updated_count == 1


class TestUpdateManifest:
    """Test rewriting manifest files on disk."""

    def make_project(self, path, dependencies):
        return Project(name="web", file_path=str(path), dependencies=dependencies, source=PackageSource.NPM)

    def test_preserves_line_endings_and_bom(self, tmp_path):
        """Should keep CRLF line endings, the byte-order mark and the trailing newline."""
        path = tmp_path / "package.json"
        raw = "\ufeff" + PACKAGE_JSON.replace("\n", "\r\n") + "\r\n"
        path.write_bytes(raw.encode("utf-8"))

        result = update_manifest(self.make_project(path, npm_dependencies()))

        data = path.read_bytes()
        assert data.startswith(b"\xef\xbb\xbf")
        assert data.endswith(b"}\r\n")
        assert b'"@pkg": "^23.1.1",\r\n' in data
        assert b"\n" not in data.replace(b"\r\n", b"")
        assert result.updated_count == 2

    def test_missing_file(self, tmp_path):
        """Should raise ManifestError when the file is gone."""
        with pytest.raises(ManifestError):
            update_manifest(self.make_project(tmp_path / "package.json", npm_dependencies()))

    def test_update_projects(self, tmp_path):
        """Should rewrite every project file."""
        path = tmp_path / "package.json"
        path.write_text(PACKAGE_JSON)
        projects = ProjectList([self.make_project(path, npm_dependencies())])

        result = update_projects(projects)

        assert result.updated_count == 2
        assert '"react": "~18.3.1",' in path.read_text()

    def test_update_projects_without_projects(self):
        """Should refuse to run without projects."""
        with pytest.raises(ValueError, match="No projects found"):
            update_projects(ProjectList())
