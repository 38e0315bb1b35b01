"""
                                   echo-ping
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
          Пинг с помощью ICMP ECHO REQUEST/REPLY для IPv4 и IPv6
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Отправитель и получатель работают параллельно на одном сыром сокете.
Отправитель посылает не более count запросов раз в секунду, получатель делает
не более count попыток чтения и сообщает ответы с идентификатором сеанса.
Формат ICMP Echo:
    IP header       : 20+ bytes (IPv4, отдаётся сырым сокетом при приёме)
                      40 bytes  (IPv6, ядро не отдаёт)
    ICMP            :
        type                : 1 byte            ==  8 / 0 (IPv4 request / reply)
                                                ==  128 / 129 (IPv6 request / reply)
        code                : 1 byte            ==  0
        checksum            : 2 bytes           ==  IPv4: 16 битный обратный код
                                                    дополняющей суммы всех
                                                    16 битных слов
                                                    начиная с поля type.
                                                    IPv6: считает ядро
                                                    (с псевдозаголовком)
        ECHO part of header : 4 bytes
            identifier              : 2 bytes   ==  pid процесса & 0xFFFF
            sequence number         : 2 bytes   ==  начинается с 1
                                                    и увеличивается на 1
                                                    с каждым запросом
        Description         : 4 bytes           ==  b"ping"
"""
import echoPing.client
import echoPing.icmp
import echoPing.utils
