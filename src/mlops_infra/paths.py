from __future__ import annotations

import os
import pathlib


class Paths:
    @property
    def root(self) -> pathlib.Path:
        """Return the configuration root directory.

        Raises:
            RuntimeError: If MLOPS_ROOT is not set in the environment

        """
        if "MLOPS_ROOT" not in os.environ:
            msg = "MLOPS_ROOT environment variable not set."
            raise RuntimeError(msg)

        return pathlib.Path(os.environ["MLOPS_ROOT"])

    @property
    def platforms(self) -> pathlib.Path:
        return self.root / "__platforms__"
