from .blacklist import Blacklist
from .copier import StreamCopier
from .handler import RelayHandler
from .transport import Transport
from .types import ConfigError, InboundRequest, OutboundResponse, RelayError, StreamError, UpstreamError
