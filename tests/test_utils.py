import pytest

from authpipe.utils import capitalize_string, copy_map, env_var, slice_contains, subtract_slice

VAR = "AUTHPIPE_TEST_ENV_VAR"
OTHER = "AUTHPIPE_TEST_ENV_VAR_OTHER"


def test_capitalize_string():
    assert capitalize_string("") == ""
    assert capitalize_string("a") == "A"
    assert capitalize_string("abc") == "Abc"
    assert capitalize_string("Abc") == "Abc"


def test_subtract_slice():
    assert "".join(subtract_slice(["a", "b", "c"], ["b", "c"])) == "a"
    assert "".join(subtract_slice([], ["b", "c"])) == ""
    assert "".join(subtract_slice(["a", "b", "c"], ["c", "d"])) == "ab"
    assert "".join(subtract_slice(["a", "b", "c"], [])) == "abc"


def test_slice_contains():
    assert slice_contains(["a", "b", "c"], "a")
    assert slice_contains(["a", "b", "c"], "b")
    assert slice_contains(["a", "b", "c"], "c")
    assert not slice_contains(["a", "b", "c"], "d")
    assert slice_contains([1, 2, 3], 3)
    assert not slice_contains([1, 2, 3], 4)


def test_copy_map():
    m1 = {"a": 1, "b": 2}
    m2 = copy_map(m1)
    assert m1 is not m2
    assert len(m1) == len(m2)
    assert m1["a"] == m2["a"]
    assert m1["b"] == m2["b"]
    m1["a"] = 3
    assert m1["a"] != m2["a"]
    assert m2["a"] == 1


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv(OTHER, raising=False)
    return monkeypatch


def test_env_var_string(clean_env):
    clean_env.setenv(VAR, "val")
    assert env_var(VAR, "def") == "val"
    assert env_var(OTHER, "def") == "def"


def test_env_var_int(clean_env):
    clean_env.setenv(VAR, "123")
    assert env_var(VAR, 456) == 123
    assert env_var(OTHER, 456) == 456


def test_env_var_bool(clean_env):
    clean_env.setenv(VAR, "true")
    assert env_var(VAR, False) is True
    assert env_var(OTHER, False) is False


def test_env_var_invalid(clean_env):
    clean_env.setenv(VAR, "NaN")
    assert env_var(VAR, 456) == 0
    assert env_var(OTHER, 456) == 456


def test_env_var_invalid_bool_is_false(clean_env):
    clean_env.setenv(VAR, "maybe")
    assert env_var(VAR, True) is False


def test_env_var_unsupported_type(clean_env):
    clean_env.setenv(VAR, "1.5")
    with pytest.raises(TypeError):
        env_var(VAR, 1.0)