#!/usr/bin/sudo python3
import argparse
import logging
import sys
import time

from echoPing import client
from echoPing import utils

log = logging.getLogger("echoPing")

EXIT_SOCKET_ERROR = 1
EXIT_BAD_TARGET = 2


def get_parser() -> argparse.ArgumentParser:
    """
    генерация парсера аргументов командной строки
    :return: сгенерированный парсер
    """
    parser = argparse.ArgumentParser(
        description="Посылка ICMP ECHO REQUEST и приём ECHO REPLY для IPv4 и IPv6")
    parser.add_argument("hostname", help="адресат: имя хоста или адрес, для IPv6 возможно host%%zone")
    parser.add_argument("--log_file", "-l", dest="log_file", type=argparse.FileType("a"),
                        default=sys.stderr, help="Путь до файла для логов")

    log_level = parser.add_mutually_exclusive_group()
    log_level.set_defaults(log_level=logging.ERROR)
    log_level.add_argument("--error", "-e", dest="log_level",
                           action="store_const", const=logging.ERROR,
                           help="Ограничить логирование ошибками")
    log_level.add_argument("--info", "-i", dest="log_level",
                           action="store_const", const=logging.INFO,
                           help="Ограничить логирование информацией")
    log_level.add_argument("--debug", "-d", dest="log_level",
                           action="store_const", const=logging.DEBUG,
                           help="Ограничить логирование сообщениями для дебага")

    parser.add_argument("--count", "-c", type=int, default=sys.maxsize,
                        help="Кол-во запросов")
    parser.add_argument("--size", "-s", type=int, default=56, help="Размер пакета")
    parser.add_argument("--tos", "-Q", type=int, default=0, help="Quality of Service")
    parser.add_argument("--ttl", "-t", type=int, default=64, help="IP Time to Live")
    parser.add_argument("--interface", "-I", default="", help="Адрес или имя интерфейса")
    parser.add_argument("--deadline", "-w", type=float, default=10.,
                        help="Максимальное время работы в секундах")
    return parser


def main(argv=None):
    """
    точка входа
    :param argv: аргументы командной строки (None == sys.argv)
    :return: код завершения
    """
    start = time.monotonic()
    args = get_parser().parse_args(argv)
    logging.basicConfig(format="%(levelname)-8s [%(asctime)-15s; %(name)s]: %(message)s",
                        level=args.log_level, stream=args.log_file)

    try:
        host, zone = utils.split_zone(args.hostname)
        target = utils.resolve(host)
    except utils.PingError as e:
        print("Error:", e, file=sys.stderr)
        return EXIT_BAD_TARGET

    print("Начинаем пинг для", target, flush=True)
    session = client.Session(target, args.count, size=args.size, ttl=args.ttl, tos=args.tos,
                             source=args.interface, zone=zone)
    try:
        completed = session.run(max(args.deadline - (time.monotonic() - start), 0))
    except OSError as e:
        log.debug("Не удалось открыть сокет: %s", e)
        print("Ошибка пинга:", e, file=sys.stderr)
        return EXIT_SOCKET_ERROR
    if not completed:
        print("Время выполнения пинга истекло!", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
