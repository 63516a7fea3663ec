# FILE: tests/conftest.py

import pytest
import sys
import os
import logging
from typing import List

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from remit_models import Segment
from remit_sink import RecordingSink
from segment_tokenizer import X12Tokenizer

# ==============================================================================
# PYTEST CONFIGURATION & HOOKS
# ==============================================================================

def pytest_configure(config):
    """Configure pytest settings and markers."""
    config.addinivalue_line("markers", "unit: Pure unit tests with no external dependencies.")
    config.addinivalue_line("markers", "integration: Tests that run the tokenizer, dispatcher and a sink together.")

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment(pytestconfig):
    """Set up test environment with logging configuration."""
    # Use pytest's log_cli_level if available, otherwise default to INFO
    log_level = pytestconfig.getoption("log_cli_level") or "INFO"
    logging.basicConfig(
        level=log_level.upper(),
        format="[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d] - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    logging.info(f"Test logging configured with level: {log_level.upper()}")
    yield

# ==============================================================================
# UNIT TEST FIXTURES (Completely isolated, no external dependencies)
# ==============================================================================

@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()

@pytest.fixture(scope="session")
def valid_835_edi_string() -> str:
    """
    Provides a compliant 835 EDI string covering every loop.

    Contains:
    - Header with BPR, TRN and DTM
    - 2 payer/payee loops (1000A payer with N3/N4/PER, 1000B payee with REF)
    - 1 LX header number with TS3
    - Claim 1: CAS, NM1, 2 DTMs and 1 service line whose RAS carries a
      repeated composite (45:RX^97:HC:A1)
    - Claim 2: NM1, an N1 entity loop (2105) and 1 service line
    - PLB with well-formed composites
    Total: 1 Transaction Set, 2 Claims, 2 Service Lines, 32 segments ST..SE
    """
    return """
ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     *240715*1200*^*00501*000000001*0*P*:~
GS*HP*SENDER*RECEIVER*20240715*1200*1*X*005010X221A1~
ST*835*0001~
BPR*I*1100*C*ACH*CCP*01*999999999*DA*123456*1512345678**01*999988880*DA*98765*20240720~
TRN*1*12345*1512345678~
DTM*405*20240716~
N1*PR*INSURANCE COMPANY~
N3*123 PAYER ST~
N4*ANYTOWN*CA*90210~
PER*BL*CLAIMS*TE*8005551212~
N1*PE*FAMILY PRACTICE*XX*1234567890~
REF*TJ*123456789~
LX*1~
TS3*1234567890*11*20241231*2*1500~
CLP*PATIENT1*1*1000*800*200*12*CLAIM0001*11:B:1~
CAS*PR*1*200~
NM1*QC*1*DOE*JOHN****MI*SUBID123~
DTM*232*20240701~
DTM*233*20240701~
SVC*HC:99213*1000*800**1~
DTM*472*20240701~
CAS*CO*45*200~
RAS*200*PR*45:RX^97:HC:A1~
REF*6R*LINE001~
AMT*B6*800~
CLP*PATIENT2*1*500*300*0*12*CLAIM0002*11:B:1~
NM1*QC*1*SMITH*JANE****MI*SUBID456~
N1*FA*RENDERING CLINIC~
N3*50 CLINIC WAY~
SVC*HC:99214*500*300**1~
DTM*472*20240705~
CAS*CO*45*200~
PLB*1234567890*20241231*WO:CLAIM0001*-50*FB:CORRECTION*25~
SE*32*0001~
GE*1*1~
IEA*1*000000001~
""".strip()

@pytest.fixture(scope="session")
def multiple_transaction_sets_835_edi_string() -> str:
    """
    Provides an 835 EDI string with two transaction sets (ST-SE blocks) in one
    functional group. The second set has no payee loop and two LX groups.
    """
    return """
ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     *240715*1200*^*00501*000000002*0*P*:~
GS*HP*SENDER*RECEIVER*20240715*1200*2*X*005010X221A1~
ST*835*0001~
BPR*I*300*C*CHK************20240720~
TRN*1*CHK001*1512345678~
N1*PR*PAYER A~
LX*1~
CLP*TXN1_CLAIM1*1*300*300*0*12*ICN0001~
SVC*HC:99213*300*300**1~
SE*8*0001~
ST*835*0002~
BPR*I*450*C*CHK************20240721~
TRN*1*CHK002*1512345678~
N1*PR*PAYER B~
LX*1~
CLP*TXN2_CLAIM1*1*200*200*0*12*ICN0002~
LX*2~
CLP*TXN2_CLAIM2*1*250*250*0*12*ICN0003~
SVC*HC:99214*250*250**1~
SE*10*0002~
GE*2*2~
IEA*1*000000002~
""".strip()

@pytest.fixture(scope="session")
def custom_separators_835_edi_string() -> str:
    """
    Provides an 835 EDI string whose ISA declares '|' as the repetition
    separator and '>' as the component separator.
    """
    return """
ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     *240715*1200*|*00501*000000003*0*P*>~
GS*HP*SENDER*RECEIVER*20240715*1200*3*X*005010X221A1~
ST*835*0001~
BPR*I*100*C*CHK************20240720~
N1*PR*PAYER C~
LX*1~
CLP*SEP_CLAIM*1*100*100*0*12*ICN0100~
SVC*HC>99213*100*100**1~
RAS*100*CO*45>RX|97>HC~
SE*8*0001~
GE*1*3~
IEA*1*000000003~
""".strip()

@pytest.fixture(scope="session")
def anomalous_835_edi_string() -> str:
    """
    Provides an 835 EDI string with segments no rule covers: a TS3 before any
    LX, an unknown ZZZ segment inside a claim and a missing SE trailer.
    """
    return """
ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     *240715*1200*^*00501*000000004*0*P*:~
GS*HP*SENDER*RECEIVER*20240715*1200*4*X*005010X221A1~
ST*835*0001~
BPR*I*100*C*CHK************20240720~
TS3*1234567890*11*20241231*1*100~
N1*PR*PAYER D~
LX*1~
CLP*ODD_CLAIM*1*100*100*0*12*ICN0200~
ZZZ*UNKNOWN~
GE*1*4~
IEA*1*000000004~
""".strip()

@pytest.fixture
def valid_835_segments(valid_835_edi_string: str) -> List[Segment]:
    return list(X12Tokenizer(valid_835_edi_string).segments())
