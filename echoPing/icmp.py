"""
Функции для работы с ICMP ECHO REPLY/REQUEST для IPv4 и IPv6
"""
import collections
import logging
import socket
import struct

from echoPing import utils

log = logging.getLogger(__name__)

ECHO_HEADER = struct.Struct("!BBHHH")
HOP_LIMIT = struct.Struct("=i")

# фильтры типов ICMP для сырых сокетов Linux: установленный бит отбрасывает тип
SOL_RAW = 255
ICMP_FILTER = 1
ICMP6_FILTER = 1
ICMP_FILTER_MASK = struct.Struct("=I")
ICMP6_FILTER_MASK = struct.Struct("=8I")

EchoMessage = collections.namedtuple("EchoMessage",
                                     ["type", "code", "identifier", "sequence", "data"])


class ICMPv4:
    """
    Параметры ICMP поверх IPv4
    """
    name = "IPv4"
    family = socket.AF_INET
    proto = socket.IPPROTO_ICMP
    echo_request = 8
    echo_reply = 0
    wildcard = "0.0.0.0"

    @staticmethod
    def encode_request(identifier, sequence, data):
        """
        Сборка ICMP ECHO REQUEST
        :param identifier: идентификатор
        :param sequence: номер сообщения
        :param data: данные
        :return: байты сообщения вместе с контрольной суммой
        """
        header = ECHO_HEADER.pack(ICMPv4.echo_request, 0, 0,
                                  identifier & 0xFFFF, sequence & 0xFFFF)
        csum = utils.checksum(header + data)
        return ECHO_HEADER.pack(ICMPv4.echo_request, 0, csum,
                                identifier & 0xFFFF, sequence & 0xFFFF) + data

    @staticmethod
    def receive(sock, size):
        """
        Приём одного пакета
        сырой сокет IPv4 отдаёт пакет вместе с IP заголовком,
        длина которого берётся из поля IHL
        :param sock: сокет для приёма
        :param size: максимальный размер пакета
        :return: кортеж (байты ICMP сообщения, адрес отправителя, None)
        """
        packet, address = sock.recvfrom(size)
        if not packet:
            raise ValueError("empty packet")
        ihl = (packet[0] & 0x0F) * 4
        return packet[ihl:], address, None

    @staticmethod
    def configure(sock, ttl, tos):
        log.debug("IPv4: TTL: %d; ToS: %d", ttl, tos)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, ttl)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_TOS, tos)
        mask = ~(1 << ICMPv4.echo_reply) & 0xFFFFFFFF
        install_filter(sock, SOL_RAW, ICMP_FILTER, ICMP_FILTER_MASK.pack(mask))

    @staticmethod
    def bind_address(source, zone=""):
        return source or ICMPv4.wildcard, 0

    @staticmethod
    def target_address(target, zone=""):
        return str(target), 0


class ICMPv6:
    """
    Параметры ICMPv6
    контрольную сумму ICMPv6 (с псевдозаголовком) считает ядро
    """
    name = "IPv6"
    family = socket.AF_INET6
    proto = socket.IPPROTO_ICMPV6
    echo_request = 128
    echo_reply = 129
    wildcard = "::"

    @staticmethod
    def encode_request(identifier, sequence, data):
        """
        Сборка ICMPv6 ECHO REQUEST с нулевой контрольной суммой
        :param identifier: идентификатор
        :param sequence: номер сообщения
        :param data: данные
        :return: байты сообщения
        """
        return ECHO_HEADER.pack(ICMPv6.echo_request, 0, 0,
                                identifier & 0xFFFF, sequence & 0xFFFF) + data

    @staticmethod
    def receive(sock, size):
        """
        Приём одного пакета вместе с вспомогательными данными
        :param sock: сокет для приёма
        :param size: максимальный размер пакета
        :return: кортеж (байты ICMP сообщения, адрес отправителя, hop limit или None)
        """
        packet, ancdata, _, address = sock.recvmsg(size, socket.CMSG_SPACE(4))
        hop_limit = None
        for level, kind, value in ancdata:
            if level == socket.IPPROTO_IPV6 and kind == socket.IPV6_HOPLIMIT and len(value) >= 4:
                hop_limit, = HOP_LIMIT.unpack_from(value)
        return packet, address, hop_limit

    @staticmethod
    def configure(sock, ttl, tos):
        log.debug("IPv6: hop limit: %d; traffic class: %d", ttl, tos)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS, ttl)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_TCLASS, tos)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_RECVHOPLIMIT, 1)
        words = [0xFFFFFFFF] * 8
        words[ICMPv6.echo_reply >> 5] &= ~(1 << (ICMPv6.echo_reply & 31)) & 0xFFFFFFFF
        install_filter(sock, socket.IPPROTO_ICMPV6, ICMP6_FILTER, ICMP6_FILTER_MASK.pack(*words))

    @staticmethod
    def bind_address(source, zone=""):
        return source or ICMPv6.wildcard, 0, 0, scope_id(zone)

    @staticmethod
    def target_address(target, zone=""):
        return str(target), 0, 0, scope_id(zone)


VARIANTS = {4: ICMPv4, 6: ICMPv6}


def install_filter(sock, level, option, value):
    """
    Фильтр ядра: в сокет попадают только ECHO REPLY,
    собственные запросы на loopback не расходуют попытки чтения
    :param sock: сокет
    :param level: уровень опции
    :param option: ICMP_FILTER или ICMP6_FILTER
    :param value: битовая маска отбрасываемых типов
    """
    try:
        sock.setsockopt(level, option, value)
    except OSError as e:
        log.debug("Фильтр ICMP недоступен, типы проверяются при разборе: %s", e)


def scope_id(zone):
    """
    Индекс интерфейса для зоны IPv6
    :type zone: str
    :param zone: имя интерфейса или его номер
    :return: индекс интерфейса (0, если зона не указана)
    """
    if not zone:
        return 0
    if zone.isdigit():
        return int(zone)
    return socket.if_nametoindex(zone)


def variant_for(address):
    """
    Выбор варианта протокола по версии адреса
    :param address: ipaddress.IPv4Address или ipaddress.IPv6Address
    """
    return VARIANTS[address.version]


def parse_message(proto, data):
    """
    Разбор ICMP сообщения
    :type proto: int
    :param proto: номер протокола (1 для ICMP, 58 для ICMPv6)
    :param data: байты ICMP сообщения (без IP заголовка)
    :return: EchoMessage для ECHO REQUEST/REPLY, None для остальных типов
    """
    if proto == ICMPv4.proto:
        echo_types = (ICMPv4.echo_request, ICMPv4.echo_reply)
    elif proto == ICMPv6.proto:
        echo_types = (ICMPv6.echo_request, ICMPv6.echo_reply)
    else:
        raise ValueError("unknown protocol: {}".format(proto))
    if len(data) < ECHO_HEADER.size:
        raise ValueError("message too short: {} bytes".format(len(data)))
    icmp_type, icmp_code, _, identifier, sequence = ECHO_HEADER.unpack_from(data)
    if icmp_type not in echo_types:
        return None
    return EchoMessage(icmp_type, icmp_code, identifier, sequence,
                       bytes(data[ECHO_HEADER.size:]))
