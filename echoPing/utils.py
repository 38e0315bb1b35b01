import ipaddress
import logging
import socket
import threading
import time

log = logging.getLogger(__name__)


class PingError(Exception):
    """
    Ошибка, после которой сеанс пинга не может быть начат
    """


class InvalidHostname(PingError):
    """
    Некорректная строка адресата
    """


class ResolutionError(PingError):
    """
    Не удалось определить адрес адресата
    """


def carry_around_add(a, b):
    """
    дополняющая сумма
    :param a: первое слагаемое
    :param b: второе слагаемое
    :return: дополняющая сумма a и b
    """
    c = a + b
    return (c & 0xFFFF) + (c >> 16)


def checksum(msg):
    """
    обратный код 16 битной дополняющей суммы елементов msg
    :param msg: сообщение для подсчёта контрольной суммы
    :return: контрольная сумма
    """
    s = 0
    for i in range(1, len(msg), 2):
        s = carry_around_add(s, msg[i] | (msg[i - 1] << 8))
    if len(msg) % 2 == 1:
        s = carry_around_add(s, msg[-1] << 8)
    return ~s & 0xFFFF


def split_zone(hostname):
    """
    Отделение зоны IPv6 от адресата
    :type hostname: str
    :param hostname: адресат в виде "host" или "host%zone"
    :return: кортеж (host, zone); zone == "" если не указана
    """
    if "%" not in hostname:
        return hostname, ""
    parts = hostname.split("%")
    if len(parts) != 2:
        raise InvalidHostname("invalid hostname: {}".format(hostname))
    return parts[0], parts[1]


def resolve(host):
    """
    Определение адреса адресата
    :type host: str
    :param host: литерал IP адреса или имя хоста
    :return: ipaddress.IPv4Address или ipaddress.IPv6Address
    """
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    try:
        addrs = socket.getaddrinfo(host, None, proto=socket.IPPROTO_IP)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(str(e)) from e
    if not addrs:
        raise ResolutionError("no addresses for {}".format(host))
    address = addrs[0][4][0]
    log.debug("Адресат %s разрешён в %s", host, address)
    # getaddrinfo может вернуть адрес с зоной: "fe80::1%eth0"
    return ipaddress.ip_address(address.split("%")[0])


class CompletionBarrier:
    """
    Ожидание сигналов о завершении от фиксированного числа участников
    """

    def __init__(self, parties):
        """
        :type parties: int
        :param parties: кол-во ожидаемых сигналов
        """
        self.parties = parties
        self.received = 0
        self.signals = threading.Semaphore(0)

    def signal(self):
        """
        сигнал о завершении одного участника
        """
        self.signals.release()

    def wait(self, timeout=None):
        """
        Ожидание сигналов от всех участников
        :type timeout: float
        :param timeout: максимальное время ожидания (None == без ограничения)
        :return: True, если все участники завершились, False по истечении времени
        """
        if timeout is not None:
            end = time.monotonic() + timeout
        while self.received < self.parties:
            remaining = None if timeout is None else max(end - time.monotonic(), 0)
            if not self.signals.acquire(timeout=remaining):
                return False
            self.received += 1
        return True
