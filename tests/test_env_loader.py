from pathlib import Path
import unittest
from unittest import mock

from cookbook import env_loader


class LoadDotenvTests(unittest.TestCase):
    def test_uses_project_dotenv_by_default(self) -> None:
        with mock.patch.object(env_loader, "load_dotenv", return_value=True) as load_dotenv:
            result = env_loader.load_dotenv_if_available()

        project_root = Path(env_loader.__file__).resolve().parents[1]
        load_dotenv.assert_called_once_with(dotenv_path=project_root / ".env", override=False)
        self.assertTrue(result)

    def test_uses_explicit_path(self) -> None:
        with mock.patch.object(env_loader, "load_dotenv", return_value=True) as load_dotenv:
            env_loader.load_dotenv_if_available(Path("/tmp/test.env"), override=True)

        load_dotenv.assert_called_once_with(dotenv_path=Path("/tmp/test.env"), override=True)

    def test_returns_false_when_file_missing(self) -> None:
        with mock.patch.object(env_loader, "load_dotenv", return_value=False):
            self.assertFalse(env_loader.load_dotenv_if_available(Path("/nonexistent/.env")))
