import os

import pytest
from pathlib import Path

import yaml

from fleetbuilder.builder.context import stage_context
from fleetbuilder.builder.ignore import IgnoreRuleResolver, compile_pattern, parse_patterns, IgnoreRuleSet
from fleetbuilder.builder.loader import ProjectLoader

from conftest import write_tree


def rule_set(lines, base=Path(".")):
    return IgnoreRuleSet(base_dir=base, rules=tuple(parse_patterns(lines)))


class TestPatternMatching:

    @pytest.mark.parametrize("pattern, path, expected", [
        ("*.log", "debug.log", True),
        ("*.log", "logs/debug.log", False),
        ("**/*.log", "logs/deep/debug.log", True),
        ("**/*.log", "debug.log", True),
        ("build/**", "build/x/y", True),
        ("doc?", "docs", True),
        ("doc?", "doc/s", False),
        ("[a-c].txt", "b.txt", True),
        ("[!a-c].txt", "b.txt", False),
    ])
    def test_compile_pattern(self, pattern, path, expected):
        assert bool(compile_pattern(pattern).match(path)) is expected

    def test_directory_pattern_excludes_contents(self):
        rules = rule_set(["node_modules"])
        assert rules.is_excluded_rel("node_modules/pkg/index.js")
        assert not rules.is_excluded_rel("src/node_modules.txt")

    def test_absolute_paths(self, tmp_path):
        rules = rule_set(["*.log"], base=tmp_path)
        assert rules.is_excluded(tmp_path / "debug.log")
        assert not rules.is_excluded(tmp_path)
        assert not rules.is_excluded(tmp_path.parent / "debug.log")

    def test_last_matching_pattern_wins(self):
        rules = rule_set(["*.md", "!README.md"])
        assert rules.is_excluded_rel("CHANGES.md")
        assert not rules.is_excluded_rel("README.md")

        rules = rule_set(["!README.md", "*.md"])
        assert rules.is_excluded_rel("README.md")

    def test_comments_blanks_and_leading_slashes(self):
        rules = rule_set(["# comment", "", "  /tmp  ", "./cache/"])
        assert rules.patterns == ["tmp", "cache"]
        assert rules.is_excluded_rel("tmp/a")
        assert rules.is_excluded_rel("cache/b")


class TestResolver:

    def load(self, root, **kwargs):
        return ProjectLoader(root, **kwargs).load()

    def test_missing_ignore_file_yields_defaults_only(self, compose_project):
        project = self.load(compose_project)
        rules = IgnoreRuleResolver(project).resolve(project.composition['main'])
        assert rules.source is None
        assert rules.is_excluded_rel(".git/config")
        assert not rules.is_excluded_rel("main/app.py")

    def test_resolution_is_idempotent(self, compose_project):
        (compose_project / ".dockerignore").write_text("*.tmp\n!keep.tmp\n")
        project = self.load(compose_project)
        resolver = IgnoreRuleResolver(project)
        first = resolver.resolve(project.composition['main'])
        second = resolver.resolve(project.composition['main'])
        assert first.patterns == second.patterns
        assert first == second

    def test_shared_mode_uses_project_root_for_every_service(self, compose_project):
        (compose_project / ".dockerignore").write_text("**/*.py\n")
        (compose_project / "main" / ".dockerignore").write_text("Dockerfile\n")
        project = self.load(compose_project)
        rule_sets = IgnoreRuleResolver(project).resolve_all()

        assert set(rule_sets) == {'main', 'worker'}
        for rules in rule_sets.values():
            assert rules.scope is None
            assert rules.base_dir == project.path
            assert "**/*.py" in rules.patterns

    def test_multi_mode_reads_each_service_context(self, compose_project):
        (compose_project / ".dockerignore").write_text("**/*.py\n")
        (compose_project / "worker" / ".dockerignore").write_text("job.py\n")
        project = self.load(compose_project)
        rule_sets = IgnoreRuleResolver(project, multi_dockerignore=True).resolve_all()

        assert rule_sets['worker'].scope == 'worker'
        assert rule_sets['worker'].is_excluded_rel("job.py")
        assert not rule_sets['main'].is_excluded_rel("app.py")
        assert "**/*.py" not in rule_sets['main'].patterns

    def test_user_patterns_cannot_drop_the_dockerfile(self, single_project):
        (single_project / ".dockerignore").write_text("*\n")
        project = self.load(single_project)
        rules = IgnoreRuleResolver(project).resolve(project.composition['main'])
        assert rules.is_excluded_rel("src/index.js")
        assert not rules.is_excluded_rel("Dockerfile")

    def test_user_pattern_may_reinclude_default_exclusion(self, single_project):
        (single_project / ".dockerignore").write_text("!.git/HEAD\n")
        project = self.load(single_project)
        rules = IgnoreRuleResolver(project).resolve(project.composition['main'])
        assert rules.is_excluded_rel(".git/config")
        assert not rules.is_excluded_rel(".git/HEAD")


class TestStaging:

    def test_stage_filters_context(self, tmp_path):
        root = write_tree(tmp_path / "ctx", {
            'Dockerfile': "FROM alpine\n",
            'app.py': "x = 1\n",
            'notes.tmp': "scratch\n",
            '.git/config': "[core]\n",
            'node_modules/pkg/index.js': "module.exports = 1\n",
            '.dockerignore': "*.tmp\nnode_modules\n",
        })
        project = ProjectLoader(root).load()
        rules = IgnoreRuleResolver(project).resolve(project.composition['main'])
        dest = tmp_path / "staged"

        count = stage_context(root, rules, dest)

        staged = sorted(p.relative_to(dest).as_posix() for p in dest.rglob('*') if p.is_file())
        assert staged == ['Dockerfile', 'app.py']
        assert count == 2

    def test_shared_rules_match_paths_from_project_root(self, compose_project, tmp_path):
        (compose_project / ".dockerignore").write_text("main/*.py\n")
        project = ProjectLoader(compose_project).load()
        rules = IgnoreRuleResolver(project).resolve(project.composition['main'])
        dest = tmp_path / "staged"

        stage_context(project.composition['main'].build_context_path, rules, dest)

        assert (dest / "Dockerfile").is_file()
        assert not (dest / "app.py").exists()

    def test_crlf_converted_only_when_requested(self, tmp_path):
        root = tmp_path / "ctx"
        root.mkdir()
        (root / "run.sh").write_bytes(b"echo hi\r\n")
        (root / "blob.bin").write_bytes(b"\x00\x01\r\n")
        rules = IgnoreRuleSet(base_dir=root, rules=())

        stage_context(root, rules, tmp_path / "plain")
        stage_context(root, rules, tmp_path / "converted", convert_eol=True)

        assert (tmp_path / "plain" / "run.sh").read_bytes() == b"echo hi\r\n"
        assert (tmp_path / "converted" / "run.sh").read_bytes() == b"echo hi\n"
        assert (tmp_path / "converted" / "blob.bin").read_bytes() == b"\x00\x01\r\n"

    def test_context_outside_project_keeps_default_exclusions(self, tmp_path):
        write_tree(tmp_path, {
            'lib/Dockerfile': "FROM alpine\n",
            'lib/a.py': "x = 1\n",
            'lib/.git/config': "[core]\n",
        })
        root = write_tree(tmp_path / "app", {
            'docker-compose.yml': yaml.safe_dump({'services': {'lib': {'build': '../lib'}}}),
            '.dockerignore': "*.py\n",
        })
        project = ProjectLoader(root).load()
        service = project.composition['lib']
        rules = IgnoreRuleResolver(project).resolve(service)
        dest = tmp_path / "staged"

        stage_context(service.build_context_path, rules, dest)

        staged = sorted(p.relative_to(dest).as_posix() for p in dest.rglob('*') if p.is_file())
        assert staged == ['Dockerfile']

    def test_directory_symlinks_are_kept_as_links(self, tmp_path):
        root = write_tree(tmp_path / "ctx", {
            'Dockerfile': "FROM alpine\n",
            'assets/logo.svg': "<svg/>\n",
            'cache/blob': "x\n",
        })
        os.symlink("assets", root / "static")
        os.symlink("cache", root / "cache-link")
        rules = IgnoreRuleSet(base_dir=root, rules=tuple(parse_patterns(["cache-link"])))
        dest = tmp_path / "staged"

        stage_context(root, rules, dest)

        assert (dest / "static").is_symlink()
        assert os.readlink(dest / "static") == "assets"
        assert (dest / "static" / "logo.svg").is_file()
        assert not (dest / "cache-link").exists()
