import collections
import ipaddress
import logging
import os
import select
import socket
import struct
import sys
import threading

from echoPing import icmp
from echoPing import utils

log = logging.getLogger(__name__)

# размер payload не применяется: всегда отправляется эта строка
PAYLOAD = b"ping"
BUFFER_SIZE = 1500


def session_id():
    """
    идентификатор сеанса: pid процесса, ограниченный 16 битами
    """
    return os.getpid() & 0xFFFF


def report(out, line):
    """
    вывод строки одной записью в поток
    """
    if out is None:
        out = sys.stdout
    out.write(line + "\n")
    out.flush()


def open_socket(variant, source="", zone="", ttl=64, tos=0):
    """
    Открытие сырого сокета для ICMP
    :param variant: icmp.ICMPv4 или icmp.ICMPv6
    :type source: str
    :type zone: str
    :type ttl: int
    :type tos: int
    :param source: адрес или имя интерфейса отправителя ("" == любой адрес)
    :param zone: зона IPv6
    :param ttl: TTL для IPv4 или hop limit для IPv6
    :param tos: ToS для IPv4 или traffic class для IPv6
    :return: привязанный и настроенный сокет
    """
    sock = socket.socket(variant.family, socket.SOCK_RAW, variant.proto)
    try:
        device = None
        if source:
            try:
                ipaddress.ip_address(source)
            except ValueError:
                device, source = source, ""
        if device is not None:
            log.debug("Привязка к интерфейсу %s", device)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BINDTODEVICE, device.encode())
        address = variant.bind_address(source, zone)
        log.debug("Привязка сокета %s к %s", variant.name, address)
        sock.bind(address)
        variant.configure(sock, ttl, tos)
    except BaseException:
        sock.close()
        raise
    return sock


class Prober:
    """
    Отправитель ICMP ECHO REQUEST: не более count запросов, по одному раз в interval секунд
    """

    def __init__(self, sock, variant, target, identifier, count,
                 zone="", interval=1., stopped=None, counters=None, out=None):
        self.sock = sock
        self.variant = variant
        self.target = target
        self.address = variant.target_address(target, zone)
        self.identifier = identifier
        self.count = count
        self.interval = interval
        self.stopped = stopped if stopped is not None else threading.Event()
        self.counters = counters if counters is not None else collections.Counter()
        self.out = out

    def send(self, sequence):
        """
        Посылка одного запроса; ошибки сборки и отправки поглощаются
        :type sequence: int
        :param sequence: номер сообщения
        :return: True, если запрос отправлен
        """
        try:
            msg = self.variant.encode_request(self.identifier, sequence, PAYLOAD)
            self.sock.sendto(msg, self.address)
        except (OSError, struct.error) as e:
            log.debug("Ошибка отправки запроса seq=%d: %s", sequence, e)
            self.counters["send_errors"] += 1
            return False
        self.counters["sent"] += 1
        return True

    def run(self, barrier=None):
        """
        цикл отправки запросов
        :param barrier: utils.CompletionBarrier, получающий сигнал по завершении
        """
        log.debug("Отправитель запущен: id: %d; кол-во запросов: %d", self.identifier, self.count)
        try:
            sequence = 1
            for _ in range(self.count):
                if self.stopped.is_set():
                    break
                self.send(sequence)
                sequence += 1
                report(self.out, "Отправлен ICMP-запрос для {} на {}".format(self.variant.name, self.target))
                if self.stopped.wait(self.interval):
                    break
        finally:
            log.debug("Отправитель завершил работу")
            if barrier is not None:
                barrier.signal()


class Correlator:
    """
    Получатель ICMP ECHO REPLY: не более count попыток чтения,
    сообщаются ответы только с идентификатором сеанса
    """

    def __init__(self, sock, variant, target, identifier, count,
                 stopped=None, poll_interval=.1, counters=None, on_reply=None, out=None):
        self.sock = sock
        self.variant = variant
        self.target = target
        self.identifier = identifier
        self.count = count
        self.stopped = stopped if stopped is not None else threading.Event()
        self.poll_interval = poll_interval
        self.counters = counters if counters is not None else collections.Counter()
        self.on_reply = on_reply
        self.out = out

    def wait_readable(self):
        """
        Ожидание данных в сокете
        истечение интервала опроса не считается попыткой чтения
        :return: False, если сеанс остановлен или сокет закрыт
        """
        while not self.stopped.is_set():
            try:
                readable, _, _ = select.select([self.sock], [], [], self.poll_interval)
            except (OSError, ValueError) as e:
                log.debug("Сокет недоступен для ожидания: %s", e)
                return False
            if readable:
                return True
        return False

    def receive(self):
        """
        Одна попытка чтения
        :return: EchoMessage, если принят ответ этого сеанса, иначе None
        """
        try:
            data, _, _ = self.variant.receive(self.sock, BUFFER_SIZE)
        except (OSError, ValueError) as e:
            log.debug("Ошибка чтения: %s", e)
            self.counters["read_errors"] += 1
            return None
        try:
            msg = icmp.parse_message(self.variant.proto, data)
        except (ValueError, struct.error) as e:
            log.debug("Ошибка разбора сообщения: %s", e)
            self.counters["parse_errors"] += 1
            return None
        if msg is None or msg.type != self.variant.echo_reply or msg.identifier != self.identifier:
            self.counters["skipped"] += 1
            return None
        return msg

    def run(self, barrier=None):
        """
        цикл приёма ответов
        :param barrier: utils.CompletionBarrier, получающий сигнал по завершении
        """
        log.debug("Получатель запущен: id: %d; кол-во попыток: %d", self.identifier, self.count)
        try:
            for _ in range(self.count):
                if not self.wait_readable():
                    break
                msg = self.receive()
                if msg is None:
                    continue
                self.counters["matched"] += 1
                report(self.out, "Ответ от {}: seq={}".format(self.target, msg.sequence))
                if self.on_reply is not None:
                    self.on_reply(msg)
        finally:
            log.debug("Получатель завершил работу")
            if barrier is not None:
                barrier.signal()


class Session:
    """
    Сеанс пинга одного адресата: отправитель и получатель
    работают параллельно на одном сокете
    """

    def __init__(self, target, count, size=56, ttl=64, tos=0, source="", zone="",
                 interval=1., on_reply=None, opener=None, out=None):
        """
        Инициализация сеанса
        :param target: ipaddress.IPv4Address или ipaddress.IPv6Address
        :type count: int
        :type size: int
        :type ttl: int
        :type tos: int
        :type source: str
        :type zone: str
        :type interval: float
        :param count: кол-во запросов
        :param size: размер пакета (принимается, но не применяется)
        :param ttl: TTL или hop limit
        :param tos: ToS или traffic class
        :param source: адрес или имя интерфейса отправителя
        :param zone: зона IPv6
        :param interval: интервал между запросами
        :param on_reply: функция, вызываемая для каждого принятого ответа
        :param opener: функция открытия сокета (None == open_socket)
        :param out: поток для вывода
        """
        self.target = target
        self.variant = icmp.variant_for(target)
        self.count = count
        self.size = size
        self.ttl = ttl
        self.tos = tos
        self.source = source
        self.zone = zone if self.variant is icmp.ICMPv6 else ""
        self.interval = interval
        self.on_reply = on_reply
        self.opener = opener or open_socket
        self.out = out
        self.identifier = session_id()
        self.stopped = threading.Event()
        self.counters = collections.Counter()
        log.debug("Инициализация сеанса: адресат: %s; %s; кол-во: %d; размер: %d",
                  target, self.variant.name, count, size)

    def run(self, timeout=None):
        """
        запуск сеанса
        :type timeout: float
        :param timeout: время до истечения срока сеанса (None == без ограничения)
        :return: True, если сеанс завершён, False если истёк срок
        """
        with self.opener(self.variant, self.source, self.zone, self.ttl, self.tos) as sock:
            log.info("Сеанс запущен: %s", self.target)
            barrier = utils.CompletionBarrier(2)
            correlator = Correlator(sock, self.variant, self.target, self.identifier, self.count,
                                    stopped=self.stopped, counters=self.counters,
                                    on_reply=self.on_reply, out=self.out)
            prober = Prober(sock, self.variant, self.target, self.identifier, self.count,
                            zone=self.zone, interval=self.interval, stopped=self.stopped,
                            counters=self.counters, out=self.out)
            workers = [threading.Thread(target=correlator.run, args=(barrier,), daemon=True),
                       threading.Thread(target=prober.run, args=(barrier,), daemon=True)]
            for worker in workers:
                worker.start()
            completed = barrier.wait(timeout)
            if not completed:
                log.info("Истёк срок сеанса")
                self.stop()
                barrier.wait(1.)
            log.info("Сеанс завершён: %s", dict(self.counters))
            return completed

    def stop(self):
        """
        остановка сеанса
        """
        self.stopped.set()
