"""
Average enroute times by year and market (= airport pair) from the ASA airline
on-time dataset (http://stat-computing.org/dataexpo/2009/the-data.html).

Input format: 29 comma separated columns, header row included.
Output: year, market, flights, scheduled, actual, in_air
"""

from typing import List, NamedTuple, Optional, Tuple

from enroute_mr.common.formats import CsvOutputFormat, DelimitedTextInputFormat
from enroute_mr.common.mapreduce import Mapper, Reducer

ASA_COLUMNS = (
    'Year', 'Month', 'DayofMonth', 'DayOfWeek', 'DepTime', 'CRSDepTime',
    'ArrTime', 'CRSArrTime', 'UniqueCarrier', 'FlightNum', 'TailNum',
    'ActualElapsedTime', 'CRSElapsedTime', 'AirTime', 'ArrDelay',
    'DepDelay', 'Origin', 'Dest', 'Distance', 'TaxiIn', 'TaxiOut',
    'Cancelled', 'CancellationCode', 'Diverted', 'CarrierDelay',
    'WeatherDelay', 'NASDelay', 'SecurityDelay', 'LateAircraftDelay',
)

OUTPUT_COLUMNS = ('year', 'market', 'flights', 'scheduled', 'actual', 'in_air')

MARKET_SEPARATOR = '-'


class FlightRecord(NamedTuple):
    """One line of the ASA dataset, fields kept as raw strings"""
    year: str
    month: str
    day_of_month: str
    day_of_week: str
    dep_time: str
    crs_dep_time: str
    arr_time: str
    crs_arr_time: str
    unique_carrier: str
    flight_num: str
    tail_num: str
    actual_elapsed_time: str
    crs_elapsed_time: str
    air_time: str
    arr_delay: str
    dep_delay: str
    origin: str
    dest: str
    distance: str
    taxi_in: str
    taxi_out: str
    cancelled: str
    cancellation_code: str
    diverted: str
    carrier_delay: str
    weather_delay: str
    nas_delay: str
    security_delay: str
    late_aircraft_delay: str


class MarketKey(NamedTuple):
    year: int
    market: str


class EnrouteTimes(NamedTuple):
    """Gate-to-gate elapsed times (scheduled and actual) plus time in air, in minutes"""
    scheduled: Optional[float]
    actual: Optional[float]
    air: Optional[float]


class MarketAggregate(NamedTuple):
    year: int
    market: str
    flights: int
    scheduled: Optional[float]
    actual: Optional[float]
    in_air: Optional[float]


def parse_number(text: str) -> Optional[float]:
    """Parse a measurement, returning None for anything non-numeric (e.g. 'NA')"""
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    # float() accepts 'nan' and 'inf'; neither is a measurement
    if value != value or value in (float('inf'), float('-inf')):
        return None
    return value


def market_for(origin: str, dest: str) -> str:
    """
    Canonical market for an airport pair.

    Direction of travel is ignored, so LAX to JFK becomes 'JFK-LAX'.
    """
    first, second = sorted((origin, dest))
    return f"{first}{MARKET_SEPARATOR}{second}"


def mean_of_present(values) -> Optional[float]:
    """Mean over the non-missing values, None when every value is missing"""
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


class AsaCsvInputFormat(DelimitedTextInputFormat):
    """ASA airline CSV lines bound to FlightRecord"""

    def __init__(self, delimiter: str = ','):
        super().__init__(ASA_COLUMNS, FlightRecord, delimiter=delimiter)


class EnrouteTimeMapper(Mapper):
    """Emits (year, market) -> (scheduled, actual, air) for completed flights"""

    header_label = ASA_COLUMNS[0]

    def map(self, record: FlightRecord) -> Optional[Tuple[MarketKey, EnrouteTimes]]:
        # Skip header lines, cancellations, and diversions
        if self._is_header(record):
            return None
        if not self._flag_is_zero(record.cancelled):
            return None
        if not self._flag_is_zero(record.diverted):
            return None

        try:
            year = int(record.year)
        except ValueError:
            return None

        key = MarketKey(year, market_for(record.origin, record.dest))
        value = EnrouteTimes(
            scheduled=parse_number(record.crs_elapsed_time),
            actual=parse_number(record.actual_elapsed_time),
            air=parse_number(record.air_time),
        )
        return key, value

    def _is_header(self, record: FlightRecord) -> bool:
        return record.year == self.header_label

    @staticmethod
    def _flag_is_zero(flag: str) -> bool:
        # Unparseable flags count as set
        return parse_number(flag) == 0


class EnrouteTimeReducer(Reducer):
    """Counts flights and averages each time over the values present"""

    def reduce(self, key: MarketKey, values: List[EnrouteTimes]) -> MarketAggregate:
        return MarketAggregate(
            year=key.year,
            market=key.market,
            flights=len(values),
            scheduled=mean_of_present(v.scheduled for v in values),
            actual=mean_of_present(v.actual for v in values),
            in_air=mean_of_present(v.air for v in values),
        )


class EnrouteTimeOutputFormat(CsvOutputFormat):

    def __init__(self, na_rep: str = 'NA'):
        super().__init__(OUTPUT_COLUMNS, na_rep=na_rep)


# Module-level job definition picked up by FunctionLoader
input_format = AsaCsvInputFormat()
mapper = EnrouteTimeMapper()
reducer = EnrouteTimeReducer()
output_format = EnrouteTimeOutputFormat()
