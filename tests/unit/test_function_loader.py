"""
Unit tests for FunctionLoader
"""

import os

import pytest

from enroute_mr.common.mapreduce import Reducer
from enroute_mr.jobs.enroute_time import (
    EnrouteTimeMapper,
    EnrouteTimeReducer,
    input_format,
    mapper,
    output_format,
    reducer,
)
from enroute_mr.worker.function_loader import DEFAULT_JOB, FunctionLoader, job_reference

CUSTOM_JOB = '''
from enroute_mr.common.mapreduce import Mapper, Reducer
from enroute_mr.jobs.enroute_time import AsaCsvInputFormat, EnrouteTimeOutputFormat


class CarrierMapper(Mapper):
    def map(self, record):
        return record.unique_carrier, 1


class CountReducer(Reducer):
    def reduce(self, key, values):
        return key, len(values)


input_format = AsaCsvInputFormat()
mapper = CarrierMapper()
reducer = CountReducer()
output_format = EnrouteTimeOutputFormat()
'''


class TestFunctionLoaderModules:
    """Tests for loading by module path"""

    def test_loads_default_job(self):
        loader = FunctionLoader()

        assert loader.job == DEFAULT_JOB
        assert isinstance(loader.get_mapper(), EnrouteTimeMapper)
        assert isinstance(loader.get_reducer(), EnrouteTimeReducer)
        assert loader.module is not None

    def test_unknown_module_raises_import_error(self):
        with pytest.raises(ImportError):
            FunctionLoader('enroute_mr.jobs.does_not_exist').load_module()


class TestFunctionLoaderFiles:
    """Tests for loading a job file"""

    def test_loads_job_file(self, temp_dir):
        path = os.path.join(temp_dir, 'carriers.py')
        with open(path, 'w') as f:
            f.write(CUSTOM_JOB)

        loader = FunctionLoader(path)

        assert type(loader.get_mapper()).__name__ == 'CarrierMapper'
        assert loader.get_reducer().reduce('AA', [1, 1]) == ('AA', 2)
        assert loader.get_input_format() is not None
        assert loader.get_output_format() is not None

    def test_raises_error_for_nonexistent_file(self):
        with pytest.raises(FileNotFoundError):
            FunctionLoader('/nonexistent/job.py').load_module()

    def test_raises_error_when_component_missing(self, temp_dir):
        path = os.path.join(temp_dir, 'partial.py')
        with open(path, 'w') as f:
            f.write("mapper = None\n")

        loader = FunctionLoader(path)

        with pytest.raises(AttributeError, match="reducer"):
            loader.get_reducer()

    def test_raises_error_when_component_has_wrong_type(self, temp_dir):
        path = os.path.join(temp_dir, 'functions.py')
        with open(path, 'w') as f:
            f.write("def mapper(record):\n    return None\n")

        with pytest.raises(TypeError, match="Mapper"):
            FunctionLoader(path).get_mapper()


class StandaloneReducer(Reducer):
    def reduce(self, key, values):
        return None


class TestJobReference:
    """Tests for naming the job workers load"""

    def test_defaults_to_module_defining_the_mapper(self):
        components = {'mapper': EnrouteTimeMapper(), 'reducer': EnrouteTimeReducer(),
                      'input_format': input_format, 'output_format': output_format}

        assert job_reference(components) == DEFAULT_JOB

    def test_job_file_is_made_absolute(self, temp_dir):
        path = os.path.join(temp_dir, 'carriers_ref.py')
        with open(path, 'w') as f:
            f.write(CUSTOM_JOB)
        loader = FunctionLoader(os.path.relpath(path))
        components = {'mapper': loader.get_mapper(), 'reducer': loader.get_reducer()}

        assert job_reference(components) == os.path.abspath(path)
        assert job_reference(components, os.path.relpath(path)) == os.path.abspath(path)

    def test_component_not_defined_by_job(self):
        components = {'mapper': mapper, 'reducer': StandaloneReducer()}

        with pytest.raises(LookupError, match='StandaloneReducer'):
            job_reference(components)

    def test_job_that_cannot_load(self):
        with pytest.raises(LookupError, match='does_not_exist'):
            job_reference({'mapper': mapper, 'reducer': reducer}, 'enroute_mr.jobs.does_not_exist')
