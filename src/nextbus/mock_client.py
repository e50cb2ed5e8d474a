"""
Mock NextBus transport for offline use and failure testing

This module provides a drop-in replacement for HttpTransport that serves
canned feed documents instead of talking to the network. It can simulate
network failures, truncated responses and feed-side errors.

Usage:
    Set environment variable NEXTBUS_TEST_MODE=1 to enable mock mode.
    Then set NEXTBUS_TEST_SCENARIO to one of:
    - normal
    - network_chaos
    - malformed
    - server_error

Example:
    NEXTBUS_TEST_MODE=1 NEXTBUS_TEST_SCENARIO=network_chaos python run.py agencies
"""

import io
import os
import random
import time
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from .client import NextBusClient
from .errors import TransportError
from .models import ClientConfig
from .request import Command


# ============================================================================
# CANNED DOCUMENTS
# ============================================================================

_HEADER = '<?xml version="1.0" encoding="utf-8" ?>\n'

DOCUMENTS = {
    Command.AGENCY_LIST: _HEADER + """<body copyright="All data copyright agencies listed below and NextBus Inc 2016.">
<agency tag="jhu-apl" title="APL" regionTitle="Maryland"/>
<agency tag="mit" title="Massachusetts Institute of Technology" regionTitle="Massachusetts"/>
<agency tag="sf-muni" title="San Francisco Muni" shortTitle="SF Muni" regionTitle="California-Northern"/>
</body>""",

    Command.ROUTE_LIST: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<route tag="boston" title="Boston Daytime"/>
<route tag="kendchar" title="Kendall to Charles Park" shortTitle="Kendall-Charles"/>
<route tag="saferidecampshut" title="Campus Shuttle"/>
</body>""",

    Command.ROUTE_CONFIG: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<route tag="saferidecampshut" title="Campus Shuttle" color="ff0000" oppositeColor="ffffff" latMin="42.3539299" latMax="42.3625299" lonMin="-71.1046699" lonMax="-71.08284">
<stop tag="mass84_d" title="84 Mass Ave" lat="42.3595199" lon="-71.09416" stopId="01"/>
<stop tag="amhe" title="Amherst St &amp; Wadsworth" lat="42.3604999" lon="-71.08634" stopId="02"/>
<stop tag="kres" title="Kresge" lat="42.3581299" lon="-71.0948" shortTitle="Kresge"/>
<direction tag="loop" title="Loop" name="Loop" useForUI="true">
  <stop tag="mass84_d"/>
  <stop tag="amhe"/>
  <stop tag="kres"/>
</direction>
<path>
<point lat="42.3595199" lon="-71.09416"/>
<point lat="42.3604999" lon="-71.08634"/>
<point lat="42.3581299" lon="-71.0948"/>
</path>
</route>
</body>""",

    Command.PREDICTIONS: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<predictions agencyTitle="Massachusetts Institute of Technology" routeTitle="Campus Shuttle" routeTag="saferidecampshut" stopTitle="84 Mass Ave" stopTag="mass84_d">
  <direction title="Loop">
  <prediction epochTime="1478620382364" seconds="244" minutes="4" isDeparture="false" dirTag="loop" vehicle="4" block="campshut" tripTag="18"/>
  <prediction epochTime="1478621102364" seconds="964" minutes="16" isDeparture="false" affectedByLayover="true" dirTag="loop" vehicle="4" block="campshut" tripTag="19"/>
  </direction>
<message text="Service ends at 3am" priority="Normal"/>
</predictions>
</body>""",

    Command.PREDICTIONS_FOR_MULTI_STOPS: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<predictions agencyTitle="Massachusetts Institute of Technology" routeTitle="Campus Shuttle" routeTag="saferidecampshut" stopTitle="84 Mass Ave" stopTag="mass84_d">
  <direction title="Loop">
  <prediction epochTime="1478620382364" seconds="244" minutes="4" isDeparture="false" dirTag="loop" block="campshut"/>
  </direction>
</predictions>
<predictions agencyTitle="Massachusetts Institute of Technology" routeTitle="Campus Shuttle" routeTag="saferidecampshut" stopTitle="Kresge" stopTag="kres" dirTitleBecauseNoPredictions="Loop">
</predictions>
</body>""",

    Command.SCHEDULE: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<route tag="saferidecampshut" title="Campus Shuttle" scheduleClass="fall16" serviceClass="wkd" direction="Loop">
<header>
<stop tag="mass84_d">84 Mass Ave</stop>
<stop tag="kres">Kresge</stop>
</header>
<tr blockID="campshut">
<stop tag="mass84_d" epochTime="66600000">18:30:00</stop>
<stop tag="kres" epochTime="66900000">18:35:00</stop>
</tr>
<tr blockID="campshut">
<stop tag="mass84_d" epochTime="68400000">19:00:00</stop>
<stop tag="kres" epochTime="-1">--</stop>
</tr>
</route>
</body>""",

    Command.MESSAGES: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<route tag="all">
<message id="14720" creator="dispatch" sendToBuses="false" startBoundary="1478600000000" endBoundary="1478700000000" priority="Normal">
<text>No service on Thanksgiving Day</text>
</message>
</route>
</body>""",

    Command.VEHICLE_LOCATIONS: _HEADER + """<body copyright="All data copyright Massachusetts Institute of Technology 2016.">
<vehicle id="4" routeTag="saferidecampshut" dirTag="loop" lat="42.3598" lon="-71.0921" secsSinceReport="12" predictable="true" heading="90" speedKmHr="22"/>
<vehicle id="7" routeTag="saferidecampshut" lat="42.3581" lon="-71.0948" secsSinceReport="301" predictable="false" heading="-1"/>
<lastTime time="1478620382364"/>
</body>""",
}

SERVER_ERROR_DOCUMENT = _HEADER + """<body copyright="All data copyright agencies listed below and NextBus Inc 2016.">
<Error shouldRetry="false">
  Agency parameter "a=bogus" is not valid.
</Error>
</body>"""

SCENARIO_CONFIGS = {
    'normal': {
        'latency_ms': (0, 0),
    },
    'network_chaos': {
        'failure_probability': 0.3,
        'latency_ms': (100, 2000),
    },
    'malformed': {
        'truncate_probability': 1.0,
        'latency_ms': (0, 0),
    },
    'server_error': {
        'server_error_probability': 1.0,
        'latency_ms': (0, 0),
    },
}


# ============================================================================
# MOCK TRANSPORT
# ============================================================================

class MockTransport:
    """
    Mock transport serving canned documents.

    Picks the document from the ?command= parameter of the requested URL.
    Drop-in replacement for HttpTransport when testing.
    """

    def __init__(self, scenario: Optional[str] = None, seed: Optional[int] = None,
                 documents: Optional[dict] = None):
        """
        Initialize mock transport.

        Args:
            scenario: Test scenario name. If None, reads from
                     NEXTBUS_TEST_SCENARIO env var (default: 'normal')
            seed: Seed for the failure dice, for reproducible runs
            documents: Override canned documents per Command
        """
        if scenario is None:
            scenario = os.environ.get('NEXTBUS_TEST_SCENARIO', 'normal')

        if scenario not in SCENARIO_CONFIGS:
            print(f"[MOCK] Unknown scenario '{scenario}', using 'normal'")
            scenario = 'normal'

        self.scenario = scenario
        self.config = SCENARIO_CONFIGS[scenario]
        self.documents = dict(DOCUMENTS)
        if documents:
            self.documents.update(documents)
        self.requested_urls: list[str] = []
        self._random = random.Random(seed)

    def fetch(self, url: str):
        """Serve the canned document for the URL's command."""
        self.requested_urls.append(url)
        config = self.config

        if self._random.random() < config.get('failure_probability', 0):
            print(f"[MOCK] Simulated network failure (call #{len(self.requested_urls)})")
            raise TransportError("Simulated network failure", url=url)

        latency = self._random.randint(*config.get('latency_ms', (0, 0)))
        if latency:
            time.sleep(latency / 1000)

        if self._random.random() < config.get('server_error_probability', 0):
            return io.BytesIO(SERVER_ERROR_DOCUMENT.encode('utf-8'))

        command_name = parse_qs(urlsplit(url).query).get('command', [''])[0]
        try:
            document = self.documents[Command(command_name)]
        except (ValueError, KeyError):
            raise TransportError(f"No canned document for command '{command_name}'", url=url,
                                 status_code=404) from None

        body = document.encode('utf-8')
        if self._random.random() < config.get('truncate_probability', 0):
            body = body[:len(body) // 2]
        return io.BytesIO(body)

    def close(self) -> None:
        pass


# ============================================================================
# FACTORY FUNCTION
# ============================================================================

def get_nextbus_client(config: Optional[ClientConfig] = None) -> NextBusClient:
    """
    Factory function to get appropriate NextBus client.

    Returns a client on MockTransport if NEXTBUS_TEST_MODE=1, otherwise a
    client on the real HTTP transport.
    """
    if os.environ.get('NEXTBUS_TEST_MODE', '0') == '1':
        scenario = os.environ.get('NEXTBUS_TEST_SCENARIO', 'normal')
        print(f"[MOCK] Test mode enabled, using MockTransport (scenario: {scenario})")
        return NextBusClient(config, transport=MockTransport(scenario))
    return NextBusClient(config)
