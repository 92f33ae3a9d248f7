"""
Pytest configuration and shared fixtures
"""

import os
import shutil
import tempfile

import pytest

from enroute_mr.jobs.enroute_time import ASA_COLUMNS

# One JFK -> LAX flight on 2004-03-25; tests override individual columns
DEFAULT_FLIGHT = {
    'Year': 2004, 'Month': 3, 'DayofMonth': 25, 'DayOfWeek': 4,
    'DepTime': 1545, 'CRSDepTime': 1530, 'ArrTime': 1900, 'CRSArrTime': 1830,
    'UniqueCarrier': 'AA', 'FlightNum': 1, 'TailNum': 'N320AA',
    'ActualElapsedTime': 345, 'CRSElapsedTime': 330, 'AirTime': 300,
    'ArrDelay': 30, 'DepDelay': 15, 'Origin': 'JFK', 'Dest': 'LAX',
    'Distance': 2475, 'TaxiIn': 10, 'TaxiOut': 35, 'Cancelled': 0,
    'CancellationCode': '', 'Diverted': 0, 'CarrierDelay': 0,
    'WeatherDelay': 0, 'NASDelay': 15, 'SecurityDelay': 0, 'LateAircraftDelay': 15,
}

HEADER_LINE = ','.join(ASA_COLUMNS)


def asa_line(**overrides) -> str:
    """One ASA CSV line built from DEFAULT_FLIGHT with column overrides"""
    values = dict(DEFAULT_FLIGHT)
    values.update(overrides)
    return ','.join(str(values[column]) for column in ASA_COLUMNS)


def write_lines(path, lines):
    with open(path, 'w') as f:
        f.write('\n'.join(lines) + '\n')
    return str(path)


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    dirpath = tempfile.mkdtemp()
    yield dirpath
    shutil.rmtree(dirpath)


@pytest.fixture
def scenario_lines():
    """Header, JFK->LAX and LAX->JFK in 2004, plus a cancelled JFK->LAX"""
    return [
        HEADER_LINE,
        asa_line(Origin='JFK', Dest='LAX', CRSElapsedTime=330, ActualElapsedTime=345, AirTime=300),
        asa_line(Origin='LAX', Dest='JFK', CRSElapsedTime=330, ActualElapsedTime=335, AirTime=290),
        asa_line(Origin='JFK', Dest='LAX', CRSElapsedTime=330, ActualElapsedTime=345, AirTime=300,
                 Cancelled=1, CancellationCode='B'),
    ]


@pytest.fixture
def sample_lines(scenario_lines):
    """A small mixed extract: several markets, years, missing values and noise"""
    return scenario_lines + [
        asa_line(Origin='BOS', Dest='ORD', CRSElapsedTime=150, ActualElapsedTime=160, AirTime=120),
        asa_line(Origin='ORD', Dest='BOS', CRSElapsedTime=140, ActualElapsedTime='NA', AirTime='NA'),
        asa_line(Year=2005, Origin='JFK', Dest='LAX', CRSElapsedTime=335, ActualElapsedTime=350, AirTime=310),
        asa_line(Origin='SFO', Dest='SEA', Diverted=1, ActualElapsedTime='NA'),
        asa_line(Origin='SEA', Dest='SFO', CRSElapsedTime=120, ActualElapsedTime='NA', AirTime='NA'),
        '2004,3,25,4,truncated',
        '',
    ]


@pytest.fixture
def sample_input_file(temp_dir, sample_lines):
    """Create a sample ASA input file for testing"""
    return write_lines(os.path.join(temp_dir, '20040325-sample.csv'), sample_lines)


@pytest.fixture
def scenario_input_file(temp_dir, scenario_lines):
    return write_lines(os.path.join(temp_dir, '20040325-jfk-lax.csv'), scenario_lines)


@pytest.fixture
def make_line():
    """Factory for ASA lines, see asa_line()"""
    return asa_line


@pytest.fixture
def header_line():
    return HEADER_LINE


@pytest.fixture
def write_csv():
    """Write lines to a file and return its path, see write_lines()"""
    return write_lines
