"""Tests for manifest parsing, version ordering and local artifact lookup."""

from pathlib import Path

import pytest

from nsmigrate_analyzer.core.manifest.gradle_parser import (
    collect_variables,
    parse_gradle,
    scope_for_configuration,
)
from nsmigrate_analyzer.core.manifest.pom_parser import parse_pom, read_pom_model
from nsmigrate_analyzer.core.manifest.properties import (
    parse_properties_text,
    resolve_gradle_string,
    resolve_string,
)
from nsmigrate_analyzer.core.manifest.registry import detect_format, parse_manifest
from nsmigrate_analyzer.core.manifest.repository import ArtifactRepository, split_archive_name
from nsmigrate_analyzer.core.manifest.versions import compare_versions, highest, in_range, is_range
from nsmigrate_analyzer.errors import ManifestParseError
from nsmigrate_analyzer.models.schema import ArtifactCoordinate

from conftest import build_jar, pom_xml, publish


def _deps(manifest):
    return {d.coordinate.key: d for d in manifest.dependencies}


class TestVersions:
    """Maven-style version ordering and ranges."""

    @pytest.mark.parametrize("lo,hi", [
        ("1.0", "1.1"),
        ("1.2", "1.10"),
        ("1.0-alpha-1", "1.0-beta-1"),
        ("1.0-rc1", "1.0"),
        ("1.0-SNAPSHOT", "1.0"),
        ("1.0", "1.0-sp1"),
        ("2.0.0.Final", "2.0.1"),
    ])
    def test_ordering(self, lo, hi):
        assert compare_versions(lo, hi) < 0
        assert compare_versions(hi, lo) > 0

    def test_order_is_total(self):
        assert compare_versions("1.0", "1") != 0
        assert compare_versions("1.0", "1.0") == 0

    def test_highest(self):
        assert highest(["1.9", "1.10", "1.2"]) == "1.10"
        assert highest([]) is None

    def test_ranges(self):
        assert is_range("[1.0,2.0)")
        assert not is_range("1.0")
        assert in_range("1.5", "[1.0,2.0)")
        assert not in_range("2.0", "[1.0,2.0)")
        assert in_range("2.0", "[1.0,2.0]")
        assert in_range("3.1", "[1.0,2.0),[3.0,)")
        assert in_range("1.5", "[1.5]")


class TestProperties:
    """Placeholder interpolation."""

    def test_parse_properties(self):
        props = parse_properties_text("# c\nservletVersion=4.0.1\njpa: 2.2\n\n")
        assert props == {"servletVersion": "4.0.1", "jpa": "2.2"}

    def test_nested_resolution(self):
        text, missing = resolve_string("${a}", {"a": "${b}-x", "b": "1"})
        assert text == "1-x"
        assert missing == []

    def test_unresolved_names_are_reported(self):
        text, missing = resolve_string("${nope}", {})
        assert text == "${nope}"
        assert missing == ["nope"]

    def test_gradle_dollar_templates(self):
        text, missing = resolve_gradle_string("javax.servlet:javax.servlet-api:$servletVersion", {"servletVersion": "4.0.1"})
        assert text == "javax.servlet:javax.servlet-api:4.0.1"
        assert missing == []


class TestPomParser:
    """POM reading with parents, properties, management and BOMs."""

    def test_read_pom_model_rejects_non_pom(self):
        model, err = read_pom_model("<settings/>")
        assert model is None
        assert err.startswith("not_a_pom")

    def test_read_pom_model_rejects_bad_xml(self):
        model, err = read_pom_model("<project>")
        assert model is None
        assert err.startswith("xml_parse_error")

    def test_unreadable_pom_raises(self, temp_dir: Path):
        p = temp_dir / "pom.xml"
        p.write_text("<project", encoding="utf-8")
        with pytest.raises(ManifestParseError):
            parse_pom(p)

    def test_direct_dependencies_with_properties(self, temp_dir: Path):
        p = temp_dir / "pom.xml"
        p.write_text(pom_xml(
            "com.acme", "web", "1.0",
            deps=[("javax.servlet", "javax.servlet-api", "${servlet.version}")],
            body="<properties><servlet.version>4.0.1</servlet.version></properties>",
        ), encoding="utf-8")
        m = parse_pom(p)

        assert m.format == "maven"
        assert m.coordinate == ArtifactCoordinate("com.acme", "web", "1.0")
        dep = _deps(m)["javax.servlet:javax.servlet-api"]
        assert dep.coordinate.version == "4.0.1"
        assert dep.scope == "compile"
        assert m.errors == []

    def test_parent_inheritance_and_management(self, temp_dir: Path):
        parent = pom_xml(
            "com.acme", "parent", "2.0",
            packaging="pom",
            body=(
                "<properties><jpa.version>2.2</jpa.version></properties>"
                "<dependencyManagement><dependencies>"
                "<dependency><groupId>javax.persistence</groupId><artifactId>javax.persistence-api</artifactId>"
                "<version>${jpa.version}</version><scope>provided</scope></dependency>"
                "</dependencies></dependencyManagement>"
            ),
        )
        (temp_dir / "pom.xml").write_text(parent, encoding="utf-8")
        child_dir = temp_dir / "core"
        child_dir.mkdir()
        child = (
            '<project xmlns="http://maven.apache.org/POM/4.0.0">'
            "<parent><groupId>com.acme</groupId><artifactId>parent</artifactId><version>2.0</version></parent>"
            "<artifactId>core</artifactId>"
            "<dependencies><dependency><groupId>javax.persistence</groupId>"
            "<artifactId>javax.persistence-api</artifactId></dependency></dependencies>"
            "</project>"
        )
        (child_dir / "pom.xml").write_text(child, encoding="utf-8")

        m = parse_pom(child_dir / "pom.xml")
        assert m.coordinate == ArtifactCoordinate("com.acme", "core", "2.0")
        assert m.parent == ArtifactCoordinate("com.acme", "parent", "2.0")
        dep = _deps(m)["javax.persistence:javax.persistence-api"]
        assert dep.coordinate.version == "2.2"
        assert dep.scope == "provided"

    def test_missing_parent_is_recorded(self, temp_dir: Path):
        (temp_dir / "pom.xml").write_text(
            '<project><parent><groupId>x</groupId><artifactId>gone</artifactId><version>1</version></parent>'
            "<artifactId>orphan</artifactId></project>",
            encoding="utf-8",
        )
        m = parse_pom(temp_dir / "pom.xml")
        assert any("parent x:gone:1 not found" in e for e in m.errors)
        assert m.coordinate == ArtifactCoordinate("x", "orphan", "1")

    def test_bom_import(self, temp_dir: Path):
        m2 = temp_dir / "m2"
        bom_dir = m2 / "com" / "acme" / "bom" / "1.0"
        bom_dir.mkdir(parents=True)
        (bom_dir / "bom-1.0.pom").write_text(pom_xml(
            "com.acme", "bom", "1.0", packaging="pom",
            body=(
                "<dependencyManagement><dependencies>"
                "<dependency><groupId>javax.ws.rs</groupId><artifactId>javax.ws.rs-api</artifactId>"
                "<version>2.1.1</version></dependency>"
                "</dependencies></dependencyManagement>"
            ),
        ), encoding="utf-8")
        app = temp_dir / "app"
        app.mkdir()
        (app / "pom.xml").write_text(pom_xml(
            "com.acme", "app", "1.0",
            deps=[("javax.ws.rs", "javax.ws.rs-api", "")],
            body=(
                "<dependencyManagement><dependencies>"
                "<dependency><groupId>com.acme</groupId><artifactId>bom</artifactId><version>1.0</version>"
                "<type>pom</type><scope>import</scope></dependency>"
                "</dependencies></dependencyManagement>"
            ),
        ), encoding="utf-8")

        repo = ArtifactRepository([m2])
        m = parse_pom(app / "pom.xml", repo.locate_pom)
        assert _deps(m)["javax.ws.rs:javax.ws.rs-api"].coordinate.version == "2.1.1"

    def test_exclusions_and_optional(self, temp_dir: Path):
        (temp_dir / "pom.xml").write_text(
            "<project><groupId>g</groupId><artifactId>a</artifactId><version>1</version><dependencies>"
            "<dependency><groupId>x</groupId><artifactId>y</artifactId><version>1</version><optional>true</optional>"
            "<exclusions><exclusion><groupId>javax.activation</groupId><artifactId>*</artifactId></exclusion></exclusions>"
            "</dependency></dependencies></project>",
            encoding="utf-8",
        )
        dep = _deps(parse_pom(temp_dir / "pom.xml"))["x:y"]
        assert dep.optional is True
        assert dep.exclusions == ["javax.activation:*"]


class TestGradleParser:
    """Regex-level Groovy and Kotlin DSL parsing."""

    def test_scope_mapping(self):
        assert scope_for_configuration("implementation") == "compile"
        assert scope_for_configuration("testImplementation") == "test"
        assert scope_for_configuration("runtimeOnly") == "runtime"
        assert scope_for_configuration("compileOnly") == "provided"
        assert scope_for_configuration("id") is None

    def test_collect_variables(self):
        text = "ext { servletVersion = '4.0.1' }\ndef jpa = '2.2'\nval cdi: String = \"2.0\"\n"
        assert collect_variables(text) == {"servletVersion": "4.0.1", "jpa": "2.2", "cdi": "2.0"}

    def test_groovy_build(self, temp_dir: Path):
        (temp_dir / "settings.gradle").write_text("rootProject.name = 'shop'\n", encoding="utf-8")
        (temp_dir / "gradle.properties").write_text("jpaVersion=2.2\n", encoding="utf-8")
        (temp_dir / "build.gradle").write_text(
            "plugins { id 'java' }\n"
            "group = 'com.acme'\n"
            "version = '1.0'\n"
            "ext.servletVersion = '4.0.1'\n"
            "dependencies {\n"
            "    implementation \"javax.servlet:javax.servlet-api:$servletVersion\"\n"
            "    compileOnly group: 'javax.persistence', name: 'javax.persistence-api', version: \"${jpaVersion}\"\n"
            "    testImplementation 'junit:junit:4.13.2'\n"
            "    implementation('com.sun.xml.bind:jaxb-impl:2.3.1') {\n"
            "        exclude group: 'javax.activation'\n"
            "    }\n"
            "    // implementation 'commented:out:1'\n"
            "}\n",
            encoding="utf-8",
        )
        m = parse_gradle(temp_dir / "build.gradle")
        deps = _deps(m)

        assert m.coordinate == ArtifactCoordinate("com.acme", "shop", "1.0")
        assert m.project_path == ":"
        assert deps["javax.servlet:javax.servlet-api"].coordinate.version == "4.0.1"
        assert deps["javax.persistence:javax.persistence-api"].scope == "provided"
        assert deps["javax.persistence:javax.persistence-api"].coordinate.version == "2.2"
        assert deps["junit:junit"].scope == "test"
        assert deps["com.sun.xml.bind:jaxb-impl"].exclusions == ["javax.activation:*"]
        assert "commented:out" not in deps

    def test_kotlin_subproject(self, temp_dir: Path):
        (temp_dir / "settings.gradle.kts").write_text('rootProject.name = "shop"\ninclude("api")\n', encoding="utf-8")
        (temp_dir / "build.gradle.kts").write_text('group = "com.acme"\nversion = "3.0"\n', encoding="utf-8")
        sub = temp_dir / "api"
        sub.mkdir()
        (sub / "build.gradle.kts").write_text(
            'val cdi by extra("2.0.2")\n'
            "dependencies {\n"
            '    api(project(":core"))\n'
            '    implementation("javax.enterprise:cdi-api:${cdi}")\n'
            '    implementation(platform("org.acme:bom:1.0"))\n'
            "}\n",
            encoding="utf-8",
        )
        m = parse_gradle(sub / "build.gradle.kts")

        assert m.coordinate == ArtifactCoordinate("com.acme", "api", "3.0")
        assert m.project_path == ":api"
        refs = [d.project_ref for d in m.dependencies if d.project_ref]
        assert refs == [":core"]
        deps = _deps(m)
        assert deps["javax.enterprise:cdi-api"].coordinate.version == "2.0.2"
        assert deps["org.acme:bom"].scope == "import"


class TestRegistryAndRepository:
    """Format detection and artifact lookup."""

    def test_detect_format(self):
        assert detect_format(Path("a/pom.xml")).name == "maven"
        assert detect_format(Path("a/build.gradle.kts")).name == "gradle"
        assert detect_format(Path("a/web.xml")) is None

    def test_parse_manifest_dispatches(self, temp_dir: Path):
        (temp_dir / "pom.xml").write_text(pom_xml("g", "a", "1"), encoding="utf-8")
        assert parse_manifest(temp_dir / "pom.xml").format == "maven"

    def test_split_archive_name(self):
        assert split_archive_name("jaxb-api-2.3.1.jar") == ("jaxb-api", "2.3.1")
        assert split_archive_name("foo-1.0-SNAPSHOT.war") == ("foo", "1.0-SNAPSHOT")
        assert split_archive_name("foo.jar") is None
        assert split_archive_name("foo-1.0.pom") is None

    def test_maven_layout_lookup(self, temp_dir: Path):
        publish(temp_dir, "javax.servlet", "javax.servlet-api", "4.0.1", classes={})
        publish(temp_dir, "javax.servlet", "javax.servlet-api", "3.1.0")
        repo = ArtifactRepository([temp_dir])
        coord = ArtifactCoordinate("javax.servlet", "javax.servlet-api", "4.0.1")

        assert repo.locate_artifact(coord).name == "javax.servlet-api-4.0.1.jar"
        assert repo.locate_pom(coord).name == "javax.servlet-api-4.0.1.pom"
        assert repo.locate_artifact(coord.with_version("3.1.0")) is None
        assert repo.available_versions("javax.servlet", "javax.servlet-api") == ["3.1.0", "4.0.1"]

    def test_flat_index(self, temp_dir: Path):
        jar = build_jar(temp_dir / "lib" / "legacy-1.0.jar", {})
        repo = ArtifactRepository()
        assert repo.index_archive(jar)
        assert repo.locate_artifact(ArtifactCoordinate("any.group", "legacy", "1.0")) == jar
        assert repo.indexed_archives() == [jar]
