# Package initializer: exports the public API of data_collection.

from .exceptions import DataCollectionException, ValidationException, TimeoutException, \
    InvalidOperandKindException, UnknownOperationException, LoaderFailureException, \
    OperationFailedException
from . import codec
from . import common
from . import exceptions
from . import operations
from .collection import DataCollection, create_channel
from .config import CollectionConfig
from .correlation import Correlator
from .executor import Executor
from .loader import JsonLoader, parse_dates, decode_literals, chain
from .query import Query, Stage
from .transport import Channel, ThreadChannel, ProcessChannel
