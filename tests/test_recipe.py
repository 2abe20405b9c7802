from pathlib import Path
from textwrap import dedent

import pytest

from rbuild.buildsystem import PackageDescriptor
from rbuild.errors import RecipeError
from rbuild.recipe import RecipeRegistry, define, expand_template, load_recipe, recipe_from_dict, registry_from_config


def _write(path: Path, text: str) -> Path:
    path.write_text(dedent(text), encoding="utf-8")
    return path


def test_load_recipe_resolves_source_dir_next_to_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "libogg.yaml",
        """
        name: libogg
        version: 1.2.2
        source_dir: ${NAME}-${VERSION}
        install_prefix: /opt/x
        variants:
          all:
            build_env:
              CFLAGS: -O2
            configure: [--host=arm]
        """,
    )

    recipe = load_recipe(path)

    assert recipe.full_name == "libogg-1.2.2"
    assert recipe.source_dir == tmp_path.resolve() / "libogg-1.2.2"
    assert recipe.descriptor() == PackageDescriptor(
        name="libogg-1.2.2",
        source_dir=tmp_path.resolve() / "libogg-1.2.2",
        install_prefix=Path("/opt/x"),
    )
    variant = recipe.variant_config("all")
    assert variant.platform.prefix == Path("/opt/x")
    assert variant.build_env == {"CFLAGS": "-O2"}
    assert variant.configure_args == ("--host=arm",)


def test_undeclared_variant_falls_back_to_all() -> None:
    recipe = recipe_from_dict({
        "name": "libogg-1.2.2",
        "source_dir": "/src/libogg",
        "install_prefix": "/opt/x",
        "variants": {"all": {"configure": "--with-pic --disable-docs"}},
    })

    variant = recipe.variant_config("debug")

    assert variant.name == "debug"
    assert variant.configure_args == ("--with-pic", "--disable-docs")


def test_recipe_without_variants_has_bare_all() -> None:
    recipe = recipe_from_dict({"name": "zlib", "source_dir": "/src/zlib", "install_prefix": "/opt/z"})

    assert recipe.variant_names() == ["all"]
    variant = recipe.variant_config()
    assert variant.build_env == {}
    assert variant.configure_args == ()


def test_unknown_variant_without_all_is_an_error() -> None:
    recipe = recipe_from_dict({
        "name": "zlib",
        "source_dir": "/src/zlib",
        "install_prefix": "/opt/z",
        "variants": {"arm": {}},
    })

    with pytest.raises(RecipeError) as excinfo:
        recipe.variant_config("x86")

    assert excinfo.value.context["declared"] == "arm"


def test_variant_platform_comes_from_platform_table() -> None:
    recipe = recipe_from_dict({
        "name": "libogg",
        "source_dir": "/src/libogg",
        "install_prefix": "/opt/x",
        "variants": {"arm": {"platform": "android", "configure": ["--prefix-check=${PREFIX}", "--v=${VARIANT}"]}},
    })

    variant = recipe.variant_config("arm", platforms={"android": {"prefix": "/opt/android"}})

    assert variant.platform.name == "android"
    assert variant.platform.prefix == Path("/opt/android")
    assert variant.configure_args == ("--prefix-check=/opt/android", "--v=arm")

    with pytest.raises(RecipeError):
        recipe.variant_config("arm", platforms={})


def test_platforms_default_to_config(tmp_path: Path) -> None:
    _write(tmp_path / "rbuild.yaml", "platforms:\n  ios:\n    prefix: /opt/ios\n")
    recipe = recipe_from_dict({
        "name": "libogg",
        "source_dir": "/src/libogg",
        "install_prefix": "/opt/x",
        "variants": {"all": {"platform": "ios"}},
    })

    assert recipe.variant_config().platform.prefix == Path("/opt/ios")


def test_template_leaves_unknown_variables() -> None:
    assert expand_template("${HOME}/${NAME}", {"NAME": "ogg"}) == "${HOME}/ogg"


@pytest.mark.parametrize(
    "data",
    [
        {"name": "x", "source_dir": "/s"},
        {"name": "x", "source_dir": "/s", "install_prefix": "/p", "variants": ["all"]},
        {"name": "x", "source_dir": "/s", "install_prefix": "/p", "variants": {"all": {"build_env": ["A=1"]}}},
        {"name": "x", "source_dir": "/s", "install_prefix": "/p", "variants": {"all": {"configure": 5}}},
    ],
)
def test_malformed_recipes_raise(data) -> None:
    with pytest.raises(RecipeError):
        recipe_from_dict(data)


def test_unparseable_recipe_file(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "name: [unclosed\n")

    with pytest.raises(RecipeError) as excinfo:
        load_recipe(path)

    assert "cannot parse" in str(excinfo.value)


def test_registry_define_and_variant() -> None:
    reg = RecipeRegistry()
    recipe = reg.define("libogg-1.2.2", source_dir="/src/libogg", install_prefix="/opt/x")
    recipe.variant("all", build_env={"CFLAGS": "-Os"}, configure=["--host=arm"])

    assert reg.get("libogg-1.2.2") is recipe
    assert "libogg-1.2.2" in reg
    assert reg.get("libogg-1.2.2").variant_config().configure_args == ("--host=arm",)
    with pytest.raises(RecipeError):
        reg.define("libogg-1.2.2", source_dir="/elsewhere", install_prefix="/opt/y")
    with pytest.raises(RecipeError):
        reg.get("libvorbis")


def test_registry_load_dir(tmp_path: Path) -> None:
    pkgs = tmp_path / "packages"
    pkgs.mkdir()
    _write(pkgs / "b.yaml", "name: libvorbis\nsource_dir: src\ninstall_prefix: /opt/x\n")
    _write(pkgs / "a.yml", "name: libogg\nversion: '1.2.2'\nsource_dir: src\ninstall_prefix: /opt/x\n")
    _write(pkgs / "notes.txt", "ignored")

    reg = RecipeRegistry()
    loaded = reg.load_paths([pkgs, tmp_path / "missing"])

    assert len(loaded) == 2
    assert reg.names() == ["libogg-1.2.2", "libvorbis"]
    assert [r.name for r in reg] == ["libogg", "libvorbis"]


def test_platform_entry_without_mapping_is_a_recipe_error() -> None:
    recipe = recipe_from_dict({
        "name": "libogg",
        "source_dir": "/src/libogg",
        "install_prefix": "/opt/x",
        "variants": {"all": {"platform": "arm"}},
    })

    with pytest.raises(RecipeError) as excinfo:
        recipe.variant_config(platforms={"arm": "/opt/arm"})

    assert excinfo.value.context["platform"] == "arm"


def test_registry_from_config_includes_defined_recipes(tmp_path: Path) -> None:
    pkgs = tmp_path / "packages"
    pkgs.mkdir()
    _write(pkgs / "vorbis.yaml", "name: libvorbis\nsource_dir: src\ninstall_prefix: /opt/x\n")
    define("libogg", version="1.2.2", source_dir="/src/libogg", install_prefix="/opt/x").variant("all")

    reg = registry_from_config()

    assert reg.names() == ["libogg-1.2.2", "libvorbis"]
