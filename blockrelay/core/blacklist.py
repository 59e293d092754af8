from bisect import bisect_left
from typing import Iterable, Iterator, List


class Blacklist:
    """
    Hosts for which forwarding is refused.

    Entries are compared exactly as the client sent them: no case folding
    and no port stripping, so "Evil.example" and "evil.example:80" are
    different hosts.

    Attributes:
        hosts (List[str]): The entries, sorted ascending
    """

    def __init__(self, hosts: Iterable[str] = ()):
        self.hosts: List[str] = sorted(hosts)

    def contains(self, host: str) -> bool:
        """
        Check whether a host is blacklisted.

        Args:
            host (str): The host exactly as presented by the client

        Returns:
            bool: True if the host is in the blacklist
        """
        i = bisect_left(self.hosts, host)
        return i < len(self.hosts) and self.hosts[i] == host

    def __contains__(self, host: object) -> bool:
        return isinstance(host, str) and self.contains(host)

    def __iter__(self) -> Iterator[str]:
        return iter(self.hosts)

    def __len__(self) -> int:
        return len(self.hosts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Blacklist):
            return NotImplemented
        return self.hosts == other.hosts

    def __repr__(self) -> str:
        return f"Blacklist({self.hosts!r})"
