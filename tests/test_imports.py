import coreason_forge


def test_public_api() -> None:
    assert coreason_forge.__version__ == "0.1.0"
    for name in coreason_forge.__all__:
        assert hasattr(coreason_forge, name)


def test_error_hierarchy() -> None:
    assert issubclass(coreason_forge.StageTimeout, coreason_forge.ForgeError)
    assert issubclass(coreason_forge.StageTimeout, TimeoutError)
    error = coreason_forge.StageTimeout("installing", 30)
    assert error.stage == "installing"
    assert str(error) == "Stage 'installing' exceeded 30 seconds limit."
