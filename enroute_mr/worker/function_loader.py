"""
Dynamic job loader
Loads a job definition (mapper, reducer, input and output format) from a
module path or a Python file
"""

import importlib
import importlib.util
import os
import sys
from typing import Optional

from enroute_mr.common.formats import InputFormat, OutputFormat
from enroute_mr.common.mapreduce import Mapper, Reducer

DEFAULT_JOB = "enroute_mr.jobs.enroute_time"

# Module name prefix for jobs loaded from a file
FILE_JOB_PREFIX = "enroute_user_job_"

COMPONENTS = ("mapper", "reducer", "input_format", "output_format")


class FunctionLoader:
    """Resolves the four job components from a user-provided module"""

    def __init__(self, job: str = DEFAULT_JOB):
        """
        Initialize the loader

        Args:
            job: Dotted module path (e.g. 'enroute_mr.jobs.enroute_time')
                 or path to a Python file defining the job
        """
        self.job = job
        self.module = None

    def _is_file(self) -> bool:
        return self.job.endswith(".py") or os.sep in self.job

    def load_module(self):
        """
        Import the job module

        Returns:
            The loaded module object

        Raises:
            FileNotFoundError: If a job file path doesn't exist
            ImportError: If a dotted module path can't be imported
        """
        if self._is_file():
            if not os.path.exists(self.job):
                raise FileNotFoundError(f"Job file not found: {self.job}")

            name = f"{FILE_JOB_PREFIX}{os.path.splitext(os.path.basename(self.job))[0]}"
            loaded = sys.modules.get(name)
            if loaded is not None and getattr(loaded, "__file__", None) == os.path.abspath(self.job):
                self.module = loaded
                return loaded

            spec = importlib.util.spec_from_file_location(name, os.path.abspath(self.job))
            if spec is None or spec.loader is None:
                raise ImportError(f"Failed to load job file: {self.job}")
            module = importlib.util.module_from_spec(spec)
            # Registered so pickled intermediate pairs resolve their classes
            sys.modules[name] = module
            spec.loader.exec_module(module)
        else:
            module = importlib.import_module(self.job)

        self.module = module
        return module

    def _get(self, attribute: str, expected_type):
        if not self.module:
            self.load_module()

        if not hasattr(self.module, attribute):
            raise AttributeError(f"Job module must define '{attribute}'")
        value = getattr(self.module, attribute)
        if not isinstance(value, expected_type):
            raise TypeError(
                f"'{attribute}' must be a {expected_type.__name__} instance, "
                f"got {type(value).__name__}"
            )
        return value

    def get_mapper(self) -> Mapper:
        """
        Get the mapper from the loaded module

        Raises:
            AttributeError: If module doesn't define 'mapper'
        """
        return self._get("mapper", Mapper)

    def get_reducer(self) -> Reducer:
        """
        Get the reducer from the loaded module

        Raises:
            AttributeError: If module doesn't define 'reducer'
        """
        return self._get("reducer", Reducer)

    def get_input_format(self) -> InputFormat:
        return self._get("input_format", InputFormat)

    def get_output_format(self) -> OutputFormat:
        return self._get("output_format", OutputFormat)


def _type_name(value) -> str:
    return f"{type(value).__module__}.{type(value).__qualname__}"


def job_reference(components: dict, job: Optional[str] = None) -> str:
    """
    Name the job a worker should load to get the given components

    Args:
        components: Component name (see COMPONENTS) -> job object
        job: Module path or file to check; defaults to the module defining
             the mapper's class (or the file it was loaded from)

    Returns:
        Job string for FunctionLoader

    Raises:
        LookupError: If the job doesn't define components of the same types
    """
    if job is None:
        module = sys.modules.get(type(components["mapper"]).__module__)
        if module is None:
            raise LookupError("Cannot locate the module defining the mapper")
        job = module.__file__ if module.__name__.startswith(FILE_JOB_PREFIX) else module.__name__

    loader = FunctionLoader(job)
    try:
        loader.load_module()
    except (ImportError, FileNotFoundError, SyntaxError) as e:
        raise LookupError(f"Cannot load job {job}: {e}") from e

    for name, component in components.items():
        defined = getattr(loader.module, name, None)
        if defined is None or _type_name(defined) != _type_name(component):
            raise LookupError(
                f"Job {job} does not define a {name} of type {_type_name(component)}; "
                f"workers load components by module, so pass the job module that defines all of them"
            )
    return os.path.abspath(job) if loader._is_file() else job
